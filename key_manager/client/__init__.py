"""Client module for the provisioning API.

This module handles all outbound communication:
- Transport layer wrapping httpx with bearer authentication
- Retry policy with bounded exponential backoff and rate-limit recovery
- Error classification into a fixed taxonomy
"""
