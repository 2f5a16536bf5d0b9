"""Provisioning Key Manager.

Lifecycle administration (create, list, enable/disable, limit, rotate, delete)
for API keys issued through a provisioning HTTP API, with retrying transport,
glob-based key selection and confirmation-gated batch execution.
"""

__version__ = "0.1.0"
