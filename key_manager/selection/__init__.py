"""Key selection for key manager operations.

Resolves an exact hash or a name glob into the ordered list of keys an
operation applies to, using the complete remote listing.
"""
