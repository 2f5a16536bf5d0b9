"""Safety models for key manager operations.

This module defines data models for the confirmation workflow and the
audit trail kept for every batch operation.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ConfirmationRequest(BaseModel):
    """A request for a yes/no decision before a batch touches remote keys."""

    request_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()), description="Unique request ID"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Request creation time",
    )
    action: str = Field(..., description="Verb shown to the user (e.g. 'delete')")
    target_count: int = Field(..., ge=0, description="Number of keys affected")
    preview: str = Field(..., description="Rendered preview shown to the user")
    approved: Optional[bool] = Field(None, description="Decision, None until answered")
    answered_at: Optional[datetime] = Field(None, description="Decision time")

    def record_decision(self, approved: bool) -> None:
        """Store the user's answer."""
        self.approved = approved
        self.answered_at = datetime.now(timezone.utc)


class AuditLogEntry(BaseModel):
    """Represents an audit log entry."""

    entry_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()), description="Unique entry ID"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Entry timestamp",
    )

    # Operation details
    operation: str = Field(..., description="Operation performed")
    status: str = Field(
        ...,
        description="Operation status (requested, approved, declined, skipped, completed)",
    )
    confirmation_request_id: Optional[str] = Field(
        None, description="Associated confirmation request ID"
    )
    targets: List[str] = Field(
        default_factory=list, description="Hashes of the keys involved"
    )

    # Results
    execution_results: Dict[str, Any] = Field(
        default_factory=dict, description="Execution results"
    )
    error_message: Optional[str] = Field(
        None, description="Error message if operation failed"
    )
