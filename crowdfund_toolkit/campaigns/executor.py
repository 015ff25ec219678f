"""
OperationExecutor - submit a mutating operation and wait for it to take effect.

Flow for one execution:
1. Build the payload; refuse an empty payload without submitting
2. Sign and submit through the Ledger Service
3. On acceptance, await finality, refresh the affected entity, then run
   the success continuation
4. On rejection, decode the abort code for diagnostics; if the target entry
   function does not exist and a fallback was supplied, run the fallback
   once (the fallback itself never gets a fallback)

Abort-code classification is diagnostic only and never changes control flow.
Concurrency gating (one in-flight operation per view) is the caller's job.
"""

import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Union

from crowdfund_toolkit.campaigns.models import (
    AuditEntry,
    FinalityStatus,
    OperationOutcome,
    OperationStatus,
    RejectionCode,
    RejectionReason,
)
from crowdfund_toolkit.campaigns.transactions import TransactionPayload
from crowdfund_toolkit.shared.exceptions import RetryableException
from crowdfund_toolkit.shared.logging import get_logger
from crowdfund_toolkit.shared.services.ledger_service import LedgerService

logger = get_logger(__name__)

TransactionBuilder = Callable[[], Optional[TransactionPayload]]
Continuation = Callable[[OperationOutcome], Union[None, Awaitable[None]]]
Refresh = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class Fallback:
    """Semantically equivalent operation to use when the target is missing."""

    operation: str
    build_transaction: TransactionBuilder


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class OperationExecutor:
    """
    Executes mutating operations against the Ledger Service.

    Attributes:
        ledger: Remote primitives
        refresh: Coroutine re-reading the affected entity after finality
        audit_trail: Records of owner overrides executed through this executor
    """

    def __init__(self, ledger: LedgerService, refresh: Optional[Refresh] = None):
        self.ledger = ledger
        self.refresh = refresh
        self.audit_trail: List[AuditEntry] = []

    async def execute(
        self,
        operation: str,
        build_transaction: TransactionBuilder,
        on_success: Optional[Continuation] = None,
        fallback: Optional[Fallback] = None,
    ) -> OperationOutcome:
        """
        Submit ``operation`` and wait for it to take effect.

        Args:
            operation: Operation tag used for status tracking and logs
            build_transaction: Zero-argument payload builder
            on_success: Called with the outcome after finality and refresh
            fallback: Used once if the target entry function does not exist

        Returns:
            OperationOutcome; this method does not raise for remote failures
        """
        return await self._execute(operation, build_transaction, on_success, fallback, None)

    async def _execute(
        self,
        operation: str,
        build_transaction: TransactionBuilder,
        on_success: Optional[Continuation],
        fallback: Optional[Fallback],
        fallback_from: Optional[str],
    ) -> OperationOutcome:
        try:
            payload = build_transaction()
        except (TypeError, ValueError) as e:
            logger.error(f"Could not build transaction for '{operation}': {e}")
            return OperationOutcome(
                operation=operation,
                status=OperationStatus.FAILED,
                rejection=RejectionReason(RejectionCode.EMPTY_TRANSACTION, str(e)),
                message=f"Could not build transaction: {e}",
                fallback_from=fallback_from,
            )

        if payload is None or payload.is_empty():
            logger.error(f"Empty transaction for '{operation}', nothing submitted")
            rejection = RejectionReason(RejectionCode.EMPTY_TRANSACTION)
            return OperationOutcome(
                operation=operation,
                status=OperationStatus.FAILED,
                rejection=rejection,
                message=rejection.describe(),
                fallback_from=fallback_from,
            )

        logger.info(f"Submitting '{operation}' ({payload.function})")
        try:
            submission = await self.ledger.submit_transaction(payload)
        except RetryableException as e:
            logger.error(f"Submission of '{operation}' failed: {e}")
            return OperationOutcome(
                operation=operation,
                status=OperationStatus.FAILED,
                message=str(e),
                fallback_from=fallback_from,
                retryable=True,
            )

        if not submission.accepted:
            rejection = submission.rejection or RejectionReason(RejectionCode.UNKNOWN)
            self._log_rejection(operation, rejection)

            if (
                fallback is not None
                and rejection.code is RejectionCode.FUNCTION_NOT_FOUND
            ):
                logger.warning(
                    f"'{operation}' is not available in the deployed contract, "
                    f"falling back to '{fallback.operation}'"
                )
                return await self._execute(
                    fallback.operation,
                    fallback.build_transaction,
                    on_success,
                    None,
                    operation,
                )

            return OperationOutcome(
                operation=operation,
                status=OperationStatus.FAILED,
                digest=submission.digest,
                rejection=rejection,
                message=rejection.describe(),
                fallback_from=fallback_from,
            )

        digest = submission.digest
        try:
            finality = await self.ledger.await_finality(digest)
        except RetryableException as e:
            logger.warning(f"Could not confirm finality of {digest}: {e}")
            finality = FinalityStatus.TIMEOUT

        if finality is not FinalityStatus.FINALIZED:
            logger.warning(f"'{operation}' accepted as {digest} but not yet final")
            return OperationOutcome(
                operation=operation,
                status=OperationStatus.UNCONFIRMED,
                digest=digest,
                message="Transaction submitted, effects not yet confirmed",
                fallback_from=fallback_from,
            )

        outcome = OperationOutcome(
            operation=operation,
            status=OperationStatus.SUCCESS,
            digest=digest,
            fallback_from=fallback_from,
        )
        logger.info(f"'{operation}' finalized in {digest}")

        if self.refresh is not None:
            try:
                await self.refresh()
            except RetryableException as e:
                logger.warning(f"Refresh after '{operation}' failed: {e}")
                outcome.message = "Succeeded; refresh failed, displayed state may be stale"

        if on_success is not None:
            await _maybe_await(on_success(outcome))

        return outcome

    @staticmethod
    def _log_rejection(operation: str, rejection: RejectionReason) -> None:
        if rejection.code is RejectionCode.MOVE_ABORT:
            logger.error(
                f"'{operation}' aborted by contract (code {rejection.abort_code}): "
                f"{rejection.describe()}"
            )
        else:
            logger.error(
                f"'{operation}' rejected ({rejection.code.value}): {rejection.message}"
            )

    def record_override(
        self,
        outcome: OperationOutcome,
        campaign_id: str,
        operator: Optional[str],
        requested: str,
    ) -> AuditEntry:
        """Append an audit record for an owner override and flag the outcome."""
        outcome.override = True
        entry = AuditEntry(
            operation=requested,
            campaign_id=campaign_id,
            operator=operator,
            status=outcome.status,
            timestamp_ms=int(time.time() * 1000),
            digest=outcome.digest,
            executed_as=outcome.operation,
        )
        self.audit_trail.append(entry)
        logger.warning(
            f"AUDIT override '{requested}' on {campaign_id} by {operator}: "
            f"{outcome.status.value} as '{outcome.operation}' ({outcome.digest})"
        )
        return entry
