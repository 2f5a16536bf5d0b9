"""Execution models for key manager batch operations.

This module defines the operation kinds, the batch state machine and the
success/failure partition a batch returns.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class OperationKind(str, Enum):
    """Operations a batch can apply to every target."""

    ENABLE = "enable"
    DISABLE = "disable"
    SET_LIMIT = "set_limit"
    DELETE = "delete"
    ROTATE = "rotate"
    CREATE = "create"


class BatchState(str, Enum):
    """Lifecycle of a batch run."""

    IDLE = "idle"
    RESOLVING = "resolving"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTING = "executing"
    COMPLETED = "completed"


class BatchOutcome(str, Enum):
    """How a completed batch went, judged from its partition alone."""

    SUCCESS = "success"  # every target succeeded
    PARTIAL = "partial"  # some succeeded, some failed
    FAILED = "failed"    # nothing succeeded, at least one failure
    EMPTY = "empty"      # nothing attempted


class BatchOperation(BaseModel):
    """One operation kind plus its parameters."""

    kind: OperationKind = Field(..., description="Operation to apply")
    limit: Optional[float] = Field(
        None, description="New limit for set_limit, limit of created keys"
    )

    @model_validator(mode="after")
    def check_limit(self) -> "BatchOperation":
        needs_limit = self.kind in (OperationKind.SET_LIMIT, OperationKind.CREATE)
        if needs_limit and self.limit is None:
            raise ValueError(f"{self.kind.value} requires a limit")
        return self

    @property
    def verb(self) -> str:
        """Verb used in previews and logs."""
        if self.kind == OperationKind.SET_LIMIT:
            return f"set limit to ${self.limit:.2f} for"
        return self.kind.value

    @property
    def warning(self) -> Optional[str]:
        if self.kind == OperationKind.ROTATE:
            return (
                "WARNING: Old keys will be deleted and new keys will be generated. "
                "Users will need to update to the new API keys."
            )
        if self.kind == OperationKind.DELETE:
            return "WARNING: Deleted keys cannot be recovered."
        return None


class BatchFailure(BaseModel):
    """A target that failed, with the reason."""

    identifier: str = Field(..., description="Hash of the failed key")
    name: str = Field(..., description="Name of the failed key")
    error_message: str = Field(..., description="Human-readable error message")
    error_code: Optional[str] = Field(None, description="Error taxonomy code")


class RotatedKey(BaseModel):
    """Replacement issued for a rotated key."""

    name: str = Field(..., description="Name shared by old and new key")
    old_hash: str = Field(..., description="Hash of the deleted key")
    new_hash: str = Field(..., description="Hash of the replacement key")
    secret: str = Field(..., repr=False, description="Secret of the replacement key")
    limit: Optional[float] = Field(None, description="Limit carried over")


class IssuedKey(BaseModel):
    """Key issued by a batch create."""

    name: str = Field(..., description="Generated key name")
    hash: str = Field(..., description="Hash of the new key")
    secret: str = Field(..., repr=False, description="Secret of the new key")
    limit: Optional[float] = Field(None, description="Spending limit in USD")


class BatchResult(BaseModel):
    """Success/failure partition of a batch, in target order."""

    succeeded: List[str] = Field(
        default_factory=list, description="Hashes that succeeded (new hashes for create)"
    )
    failed: List[BatchFailure] = Field(default_factory=list, description="Targets that failed")
    rotated: List[RotatedKey] = Field(
        default_factory=list, description="Replacement keys issued by rotation"
    )
    created: List[IssuedKey] = Field(
        default_factory=list, description="Keys issued by a batch create"
    )
    cancelled: bool = Field(False, description="Whether confirmation was declined")

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def outcome(self) -> BatchOutcome:
        if self.total == 0:
            return BatchOutcome.EMPTY
        if not self.failed:
            return BatchOutcome.SUCCESS
        if not self.succeeded:
            return BatchOutcome.FAILED
        return BatchOutcome.PARTIAL

    def summary(self) -> Dict[str, Any]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "outcome": self.outcome.value,
            "cancelled": self.cancelled,
        }


class BatchRun(BaseModel):
    """Tracks one batch through its state machine."""

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique run ID")
    operation: BatchOperation = Field(..., description="Operation being applied")
    state: BatchState = Field(BatchState.IDLE, description="Current state")
    state_history: List[BatchState] = Field(
        default_factory=lambda: [BatchState.IDLE], description="States visited"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Run creation time"
    )
    completed_at: Optional[datetime] = Field(None, description="Run completion time")
    target_count: int = Field(0, description="Number of resolved targets")
    confirmation_request_id: Optional[str] = Field(None, description="Confirmation request, if any")
    result: BatchResult = Field(default_factory=BatchResult, description="Partition so far")

    def transition(self, state: BatchState) -> None:
        self.state = state
        self.state_history.append(state)
        if state == BatchState.COMPLETED:
            self.completed_at = datetime.now(timezone.utc)
