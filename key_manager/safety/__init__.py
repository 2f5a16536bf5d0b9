"""Safety module for key manager operations.

This module provides the controls around destructive key changes:
- User confirmation before batch operations
- Audit trail of decisions and outcomes
- Validation of user-supplied limits, emails, dates and tags

All batch operations that modify remote keys pass through the confirmation
gate unless the caller explicitly pre-authorizes them.
"""
