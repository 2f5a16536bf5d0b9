"""Executor module for key manager batch operations.

This module drives one operation over a resolved list of keys:
- Target resolution from a selector or a key file
- Confirmation gating
- Strictly sequential execution with per-key failure isolation
- Success/failure accounting
"""
