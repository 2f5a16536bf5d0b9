"""Batch executor for key lifecycle operations.

This module applies one operation to a list of keys, one key at a time,
behind a confirmation gate. A failing key never stops the batch: its error is
recorded and execution moves on to the next key.
"""

from typing import Any, Callable, List, Optional, Sequence, Union

import structlog

from ..client.credential_client import CredentialClient
from ..client.models import KeyManagerError
from ..safety.confirmation_manager import ConfirmationManager
from ..safety.validator import generate_key_name, validate_email, validate_tags
from ..selection.key_selector import KeySelector
from ..selection.models import AccountEntry, KeyTarget, SelectionCriterion
from .models import (
    BatchFailure,
    BatchOperation,
    BatchResult,
    BatchRun,
    BatchState,
    IssuedKey,
    OperationKind,
    RotatedKey,
)

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[Any, bool, Optional[str]], None]
TargetSource = Union[SelectionCriterion, Sequence[KeyTarget]]


def _error_message(error: Exception) -> str:
    return error.message if isinstance(error, KeyManagerError) else str(error)


class RotationError(KeyManagerError):
    """Raised when a rotation fails after the old key was already deleted."""

    def __init__(self, message: str, old_hash: str):
        super().__init__(
            message, "ROTATION_INCOMPLETE", details={"old_hash": old_hash}
        )


class BatchExecutor:
    """Sequential, confirmation-gated executor for key operations."""

    def __init__(
        self,
        client: CredentialClient,
        confirmation_manager: Optional[ConfirmationManager] = None,
        selector: Optional[KeySelector] = None,
    ):
        """Initialize the batch executor.

        Args:
            client: Provisioning API client
            confirmation_manager: Confirmation gate, declines everything if omitted
            selector: Key selector, built over ``client`` if omitted
        """
        self.client = client
        self.confirmation_manager = confirmation_manager or ConfirmationManager()
        self.selector = selector or KeySelector(client)
        self.logger = structlog.get_logger(self.__class__.__name__)

        self._runs: List[BatchRun] = []

    @property
    def runs(self) -> List[BatchRun]:
        return list(self._runs)

    async def resolve_targets(self, source: TargetSource) -> List[KeyTarget]:
        """Turn a criterion or a pre-supplied sequence into the target list."""
        if isinstance(source, SelectionCriterion):
            return await self.selector.select(source)
        return list(source)

    async def run(
        self,
        operation: BatchOperation,
        source: TargetSource,
        skip_confirmation: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """Apply ``operation`` to every target of ``source``.

        Args:
            operation: Operation kind and parameters
            source: SelectionCriterion resolved live, or KeyTargets from a file
            skip_confirmation: Run without asking (pre-authorized)
            progress_callback: Called after each target with (target, ok, error)

        Returns:
            BatchResult with succeeded and failed in target order

        Raises:
            KeyManagerError: Only while resolving targets; per-target errors
                are captured in the result
        """
        run = BatchRun(operation=operation)
        self._runs.append(run)

        run.transition(BatchState.RESOLVING)
        try:
            targets = await self.resolve_targets(source)
        except Exception as e:
            run.transition(BatchState.COMPLETED)
            self.logger.warning(
                "Batch target resolution failed",
                run_id=run.run_id,
                operation=operation.kind.value,
                error=_error_message(e),
            )
            raise
        run.target_count = len(targets)

        self.logger.info(
            "Batch targets resolved",
            run_id=run.run_id,
            operation=operation.kind.value,
            target_count=len(targets),
        )

        if not targets:
            run.transition(BatchState.COMPLETED)
            return run.result

        if skip_confirmation:
            self.confirmation_manager.record_skipped(operation.kind.value, targets)
        else:
            run.transition(BatchState.AWAITING_CONFIRMATION)
            request = self.confirmation_manager.confirm(
                operation.verb, targets, warning=operation.warning
            )
            run.confirmation_request_id = request.request_id
            if not request.approved:
                run.result.cancelled = True
                run.transition(BatchState.COMPLETED)
                self.logger.info(
                    "Batch cancelled", run_id=run.run_id, operation=operation.kind.value
                )
                return run.result

        run.transition(BatchState.EXECUTING)
        for index, target in enumerate(targets, 1):
            self.logger.debug(
                "Processing target",
                run_id=run.run_id,
                index=index,
                total=len(targets),
                hash=target.hash,
            )
            try:
                rotated = await self._apply(operation, target)
            except Exception as e:
                message = self._record_failure(run, target.hash, target.name, e)
                self._notify(progress_callback, target, False, message)
                continue

            run.result.succeeded.append(target.hash)
            if rotated is not None:
                run.result.rotated.append(rotated)
            self._notify(progress_callback, target, True, None)

        self._complete(run)
        return run.result

    async def create_batch(
        self,
        accounts: Sequence[AccountEntry],
        limit: float,
        issued: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """Issue one key per account, named "<email> <tags...> <issued>".

        No confirmation is asked. Each row is validated and created on its
        own, so a bad email or a rejected create only fails that row.

        Returns:
            BatchResult with new hashes in ``succeeded`` and the issued keys
            in ``created``; failures are identified by key name (or email
            when no name could be built)
        """
        operation = BatchOperation(kind=OperationKind.CREATE, limit=limit)
        run = BatchRun(operation=operation, target_count=len(accounts))
        self._runs.append(run)

        self.logger.info("Batch create started", run_id=run.run_id, count=len(accounts))

        run.transition(BatchState.EXECUTING)
        for account in accounts:
            key_name = account.email
            try:
                key_name = generate_key_name(
                    validate_email(account.email), validate_tags(account.tags), issued
                )
                created = await self.client.create(key_name, limit)
            except Exception as e:
                message = self._record_failure(run, key_name, account.email, e)
                self._notify(progress_callback, account, False, message)
                continue

            run.result.succeeded.append(created.hash)
            run.result.created.append(
                IssuedKey(name=key_name, hash=created.hash, secret=created.secret, limit=limit)
            )
            self._notify(progress_callback, account, True, None)

        self._complete(run)
        return run.result

    def _record_failure(
        self, run: BatchRun, identifier: str, name: str, error: Exception
    ) -> str:
        message = _error_message(error)
        run.result.failed.append(
            BatchFailure(
                identifier=identifier,
                name=name,
                error_message=message,
                error_code=error.error_code if isinstance(error, KeyManagerError) else None,
            )
        )
        self.logger.warning(
            "Target failed",
            run_id=run.run_id,
            operation=run.operation.kind.value,
            name=name,
            identifier=identifier,
            error=message,
        )
        return message

    def _notify(
        self,
        progress_callback: Optional[ProgressCallback],
        target: Any,
        ok: bool,
        error: Optional[str],
    ) -> None:
        """Report progress; a failing callback is logged and ignored."""
        if progress_callback is None:
            return
        try:
            progress_callback(target, ok, error)
        except Exception as e:
            self.logger.warning("Progress callback failed", target=str(target), error=str(e))

    def _complete(self, run: BatchRun) -> None:
        run.transition(BatchState.COMPLETED)

        summary = run.result.summary()
        self.confirmation_manager.log_operation_result(
            operation=run.operation.kind.value,
            status=summary["outcome"],
            confirmation_request_id=run.confirmation_request_id,
            execution_results=summary,
        )
        self.logger.info("Batch completed", run_id=run.run_id, **summary)

    async def _apply(
        self, operation: BatchOperation, target: KeyTarget
    ) -> Optional[RotatedKey]:
        """Apply the operation to a single target."""
        kind = operation.kind

        if kind == OperationKind.ENABLE:
            await self.client.set_disabled(target.hash, False)
        elif kind == OperationKind.DISABLE:
            await self.client.set_disabled(target.hash, True)
        elif kind == OperationKind.SET_LIMIT:
            await self.client.set_limit(target.hash, operation.limit)
        elif kind == OperationKind.DELETE:
            await self.client.delete(target.hash)
        elif kind == OperationKind.ROTATE:
            return await self._rotate(target)
        else:
            raise KeyManagerError(f"Unsupported operation: {kind}")

        return None

    async def _rotate(self, target: KeyTarget) -> RotatedKey:
        """get -> delete -> create with the same name and limit.

        There is no rollback: once the delete succeeded the old secret is gone,
        so a failing create leaves the key deleted.
        """
        details = await self.client.get(target.hash)
        await self.client.delete(target.hash)

        try:
            created = await self.client.create(details.name, details.limit)
        except KeyManagerError as e:
            self.logger.error(
                "Rotation left key deleted",
                name=details.name,
                old_hash=target.hash,
                error=e.message,
            )
            raise RotationError(
                f"Old key deleted but replacement was not created: {e.message}",
                old_hash=target.hash,
            ) from e

        return RotatedKey(
            name=details.name,
            old_hash=target.hash,
            new_hash=created.hash,
            secret=created.secret,
            limit=details.limit,
        )
