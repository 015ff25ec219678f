"""
Unit tests for OperationExecutor: submission, rejection routing and fallback.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import CAMPAIGN_ID, OWNER
from crowdfund_toolkit.campaigns.executor import Fallback, OperationExecutor
from crowdfund_toolkit.campaigns.models import (
    FinalityStatus,
    OperationStatus,
    RejectionCode,
    RejectionReason,
    SubmissionResult,
)
from crowdfund_toolkit.campaigns.transactions import (
    FINALIZE,
    FORCE_SUCCEEDED,
    TransactionPayload,
)
from crowdfund_toolkit.shared.exceptions import LedgerTransportException

NOT_FOUND = SubmissionResult(
    accepted=False,
    rejection=RejectionReason(RejectionCode.FUNCTION_NOT_FOUND, "No function was found"),
)


class TestExecute:
    @pytest.mark.asyncio
    async def test_success_refreshes_then_continues(self, fake_ledger, transactions):
        order = []
        refresh = AsyncMock(side_effect=lambda: order.append("refresh"))
        on_success = MagicMock(side_effect=lambda outcome: order.append("continue"))
        executor = OperationExecutor(fake_ledger, refresh=refresh)

        outcome = await executor.execute(
            "finalize",
            lambda: transactions.finalize(CAMPAIGN_ID),
            on_success=on_success,
        )

        assert outcome.status is OperationStatus.SUCCESS
        assert outcome.digest == "digest-1"
        assert order == ["refresh", "continue"]
        assert fake_ledger.calls["await_finality"] == 1

    @pytest.mark.asyncio
    async def test_async_continuation_is_awaited(self, fake_ledger, transactions):
        on_success = AsyncMock()
        executor = OperationExecutor(fake_ledger)

        outcome = await executor.execute(
            "finalize", lambda: transactions.finalize(CAMPAIGN_ID), on_success=on_success
        )

        on_success.assert_awaited_once_with(outcome)

    @pytest.mark.asyncio
    async def test_empty_payload_is_never_submitted(self, fake_ledger):
        executor = OperationExecutor(fake_ledger)

        outcome = await executor.execute("donate", lambda: TransactionPayload())

        assert outcome.status is OperationStatus.FAILED
        assert outcome.rejection.code is RejectionCode.EMPTY_TRANSACTION
        assert fake_ledger.calls["submit_transaction"] == 0

    @pytest.mark.asyncio
    async def test_builder_error_is_a_failed_outcome(self, fake_ledger):
        def broken():
            raise ValueError("amount must be an int")

        outcome = await OperationExecutor(fake_ledger).execute("donate", broken)

        assert outcome.status is OperationStatus.FAILED
        assert "amount must be an int" in outcome.message
        assert fake_ledger.calls["submit_transaction"] == 0

    @pytest.mark.asyncio
    async def test_move_abort_is_described(self, fake_ledger, transactions):
        fake_ledger.queued_results.append(
            SubmissionResult(
                accepted=False,
                digest="d",
                rejection=RejectionReason(RejectionCode.MOVE_ABORT, "abort", abort_code=7),
            )
        )
        on_success = MagicMock()
        outcome = await OperationExecutor(fake_ledger).execute(
            "withdraw", lambda: transactions.withdraw(CAMPAIGN_ID), on_success=on_success
        )

        assert outcome.status is OperationStatus.FAILED
        assert outcome.rejection.abort_code == 7
        assert outcome.message == "Campaign has not succeeded (cannot withdraw)"
        on_success.assert_not_called()
        assert fake_ledger.calls["await_finality"] == 0

    def test_unknown_abort_code(self):
        reason = RejectionReason(RejectionCode.MOVE_ABORT, abort_code=99)
        assert reason.describe() == "Contract aborted with code 99"

    @pytest.mark.asyncio
    async def test_finality_timeout_is_unconfirmed(self, fake_ledger, transactions):
        fake_ledger.finality = FinalityStatus.TIMEOUT
        refresh = AsyncMock()
        executor = OperationExecutor(fake_ledger, refresh=refresh)

        outcome = await executor.execute("donate", lambda: transactions.donate(CAMPAIGN_ID, 5))

        assert outcome.status is OperationStatus.UNCONFIRMED
        assert outcome.digest == "digest-1"
        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_failure_is_retryable(self, transactions):
        ledger = MagicMock()
        ledger.submit_transaction = AsyncMock(
            side_effect=LedgerTransportException("connection reset")
        )

        outcome = await OperationExecutor(ledger).execute(
            "donate", lambda: transactions.donate(CAMPAIGN_ID, 5)
        )

        assert outcome.status is OperationStatus.FAILED
        assert outcome.retryable is True

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_success(self, fake_ledger, transactions):
        refresh = AsyncMock(side_effect=LedgerTransportException("timeout"))
        executor = OperationExecutor(fake_ledger, refresh=refresh)

        outcome = await executor.execute("finalize", lambda: transactions.finalize(CAMPAIGN_ID))

        assert outcome.succeeded
        assert "refresh failed" in outcome.message


class TestFallback:
    @pytest.mark.asyncio
    async def test_missing_function_falls_back_once(self, fake_ledger, transactions):
        executor = OperationExecutor(fake_ledger)
        fake_ledger.queued_results.append(NOT_FOUND)

        outcome = await executor.execute(
            "force_succeed",
            lambda: transactions.force_succeeded(CAMPAIGN_ID),
            fallback=Fallback("finalize", lambda: transactions.finalize(CAMPAIGN_ID)),
        )

        assert outcome.succeeded
        assert outcome.operation == "finalize"
        assert outcome.fallback_from == "force_succeed"
        assert [p.function for p in fake_ledger.submissions] == [FORCE_SUCCEEDED, FINALIZE]

    @pytest.mark.asyncio
    async def test_fallback_is_not_chained(self, fake_ledger, transactions):
        """Both target and fallback missing: exactly two submissions."""
        fake_ledger.queued_results.extend([NOT_FOUND, NOT_FOUND, NOT_FOUND])
        executor = OperationExecutor(fake_ledger)

        outcome = await executor.execute(
            "force_succeed",
            lambda: transactions.force_succeeded(CAMPAIGN_ID),
            fallback=Fallback("finalize", lambda: transactions.finalize(CAMPAIGN_ID)),
        )

        assert fake_ledger.calls["submit_transaction"] == 2
        assert outcome.status is OperationStatus.FAILED
        assert outcome.operation == "finalize"
        assert outcome.fallback_from == "force_succeed"
        assert outcome.rejection.code is RejectionCode.FUNCTION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_other_rejections_do_not_fall_back(self, fake_ledger, transactions):
        fake_ledger.queued_results.append(
            SubmissionResult(
                accepted=False,
                rejection=RejectionReason(RejectionCode.MOVE_ABORT, abort_code=8),
            )
        )
        outcome = await OperationExecutor(fake_ledger).execute(
            "force_succeed",
            lambda: transactions.force_succeeded(CAMPAIGN_ID),
            fallback=Fallback("finalize", lambda: transactions.finalize(CAMPAIGN_ID)),
        )

        assert fake_ledger.calls["submit_transaction"] == 1
        assert outcome.message == "You are not the campaign owner"


class TestAuditTrail:
    @pytest.mark.asyncio
    async def test_record_override(self, fake_ledger, transactions):
        executor = OperationExecutor(fake_ledger)
        outcome = await executor.execute(
            "finalize", lambda: transactions.finalize(CAMPAIGN_ID)
        )

        entry = executor.record_override(
            outcome, campaign_id=CAMPAIGN_ID, operator=OWNER, requested="force_succeed"
        )

        assert outcome.override is True
        assert executor.audit_trail == [entry]
        assert entry.operation == "force_succeed"
        assert entry.executed_as == "finalize"
        assert entry.status is OperationStatus.SUCCESS
        assert entry.digest == outcome.digest
