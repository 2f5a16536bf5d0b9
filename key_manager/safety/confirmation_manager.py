"""Confirmation management for key manager batch operations.

This module renders the preview shown before a destructive batch, asks the
injected prompt for a decision and keeps an audit trail of decisions and
batch outcomes.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from ..selection.models import KeyTarget
from .models import AuditLogEntry, ConfirmationRequest

logger = structlog.get_logger(__name__)

PREVIEW_LIMIT = 5

ConfirmationPrompt = Callable[[str], bool]


def _deny_all(preview: str) -> bool:
    return False


class ConfirmationManager:
    """Gates batch operations behind an explicit yes/no decision."""

    def __init__(
        self,
        prompt: Optional[ConfirmationPrompt] = None,
        preview_limit: int = PREVIEW_LIMIT,
    ):
        """Initialize the confirmation manager.

        Args:
            prompt: Blocking callable receiving the preview and returning the
                decision. Without one every request is declined.
            preview_limit: Number of keys listed in the preview
        """
        self.prompt = prompt or _deny_all
        self.preview_limit = preview_limit
        self.logger = structlog.get_logger(self.__class__.__name__)

        self._requests: Dict[str, ConfirmationRequest] = {}
        self._audit_log: List[AuditLogEntry] = []

    def build_preview(
        self,
        action: str,
        targets: Sequence[KeyTarget],
        warning: Optional[str] = None,
    ) -> str:
        """Render the list of keys about to be affected.

        Args:
            action: Verb describing the operation
            targets: Keys the operation will touch
            warning: Extra line shown after the list

        Returns:
            Preview text
        """
        lines = [f"About to {action} {len(targets)} key(s):"]
        for target in targets[: self.preview_limit]:
            lines.append(f"  - {target.name} ({target.hash})")

        remaining = len(targets) - self.preview_limit
        if remaining > 0:
            lines.append(f"  ... and {remaining} more")

        if warning:
            lines.extend(["", warning])

        return "\n".join(lines)

    def confirm(
        self,
        action: str,
        targets: Sequence[KeyTarget],
        warning: Optional[str] = None,
    ) -> ConfirmationRequest:
        """Ask for confirmation and record the decision.

        Returns:
            The answered ConfirmationRequest
        """
        preview = self.build_preview(action, targets, warning)
        request = ConfirmationRequest(
            action=action, target_count=len(targets), preview=preview
        )
        self._requests[request.request_id] = request

        self._audit_log.append(
            AuditLogEntry(
                operation=action,
                status="requested",
                confirmation_request_id=request.request_id,
                targets=[t.hash for t in targets],
            )
        )

        approved = bool(self.prompt(preview))
        request.record_decision(approved)

        self._audit_log.append(
            AuditLogEntry(
                operation=action,
                status="approved" if approved else "declined",
                confirmation_request_id=request.request_id,
                targets=[t.hash for t in targets],
            )
        )

        self.logger.info(
            "Confirmation answered",
            request_id=request.request_id,
            action=action,
            target_count=len(targets),
            approved=approved,
        )
        return request

    def record_skipped(self, action: str, targets: Sequence[KeyTarget]) -> None:
        """Note that a batch ran pre-authorized, without a prompt."""
        self._audit_log.append(
            AuditLogEntry(
                operation=action,
                status="skipped",
                targets=[t.hash for t in targets],
            )
        )

    def log_operation_result(
        self,
        operation: str,
        status: str,
        confirmation_request_id: Optional[str] = None,
        execution_results: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> str:
        """Log an operation result to the audit trail.

        Returns:
            Audit log entry ID
        """
        entry = AuditLogEntry(
            operation=operation,
            status=status,
            confirmation_request_id=confirmation_request_id,
            execution_results=execution_results or {},
            error_message=error_message,
        )
        self._audit_log.append(entry)

        self.logger.info(
            "Operation result logged",
            entry_id=entry.entry_id,
            operation=operation,
            status=status,
        )
        return entry.entry_id

    def get_audit_history(
        self,
        operation: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        """Get audit history, most recent first."""
        entries = [
            e for e in self._audit_log if operation is None or e.operation == operation
        ]
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def get_request(self, request_id: str) -> Optional[ConfirmationRequest]:
        return self._requests.get(request_id)
