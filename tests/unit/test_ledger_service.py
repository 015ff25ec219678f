"""
Unit tests for the Sui JSON-RPC ledger adapter.

Requests go through an httpx.MockTransport; no network access.
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from crowdfund_toolkit.campaigns.metadata import encode_metadata
from crowdfund_toolkit.campaigns.models import (
    CampaignState,
    EventOrder,
    FinalityStatus,
    LedgerEventKind,
    RejectionCode,
)
from crowdfund_toolkit.campaigns.transactions import CrowdfundTransactions, TransactionPayload
from crowdfund_toolkit.shared.exceptions import LedgerTransportException
from crowdfund_toolkit.shared.retry import PollPolicy, RetryConfig
from crowdfund_toolkit.shared.services.ledger_service import (
    SignedTransaction,
    SigningRejected,
    SuiCliSigner,
    SuiLedgerService,
    classify_failure,
    parse_event,
)

RPC_URL = "https://fullnode.test"
PACKAGE_ID = "0x" + "5a" * 32
CAMPAIGN_ID = "0x" + "a1" * 32
OWNER = "0x" + "0e" * 32

NO_BACKOFF = RetryConfig(max_attempts=2, base_delay=0.0, max_delay=0.0)


def rpc_result(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


def rpc_error(message, code=-32002):
    return httpx.Response(
        200,
        json={"jsonrpc": "2.0", "id": 1, "error": {"code": code, "message": message}},
    )


def campaign_object(**overrides):
    fields = {
        "owner": OWNER,
        "goal": "100",
        "raised": "40",
        "deadline_ms": "1760000000000",
        "state": 2,
        "withdrawn": False,
        "metadata_cid": list(encode_metadata("My Great Cause", "Clean water")),
    }
    fields.update(overrides)
    return {
        "data": {
            "objectId": CAMPAIGN_ID,
            "content": {"dataType": "moveObject", "fields": fields},
        }
    }


class Node:
    """Scripted JSON-RPC endpoint recording every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_service(node, signer=None, finality_policy=PollPolicy(2, 0.0)):
    client = httpx.AsyncClient(transport=httpx.MockTransport(node))
    return SuiLedgerService(
        RPC_URL,
        PACKAGE_ID,
        signer=signer,
        client=client,
        retry_config=NO_BACKOFF,
        finality_policy=finality_policy,
    )


class TestClassifyFailure:
    def test_move_abort(self):
        text = (
            "MoveAbort(MoveLocation { module: ModuleId { address: 5a, name: "
            'Identifier("crowd") }, function: 3, instruction: 12, function_name: '
            'Some("withdraw") }, 7) in command 0'
        )
        reason = classify_failure(text)
        assert reason.code is RejectionCode.MOVE_ABORT
        assert reason.abort_code == 7

    @pytest.mark.parametrize(
        "text,code",
        [
            ("No function was found with function name force_succeeded", RejectionCode.FUNCTION_NOT_FOUND),
            ("Error: FunctionNotFound", RejectionCode.FUNCTION_NOT_FOUND),
            ("InsufficientGas", RejectionCode.INSUFFICIENT_GAS),
            ("Object 0x1 does not exist", RejectionCode.OBJECT_NOT_FOUND),
            ("something else", RejectionCode.UNKNOWN),
            ("", RejectionCode.UNKNOWN),
        ],
    )
    def test_codes(self, text, code):
        assert classify_failure(text).code is code


class TestParsing:
    def test_event_without_campaign_is_dropped(self):
        assert parse_event(LedgerEventKind.DONATED, {"parsedJson": {}}) is None

    def test_event_fields(self):
        event = parse_event(
            LedgerEventKind.DONATED,
            {
                "id": {"txDigest": "D1", "eventSeq": "3"},
                "timestampMs": "1760000000123",
                "parsedJson": {"campaign": CAMPAIGN_ID, "amount": "250"},
            },
        )
        assert event.amount == 250
        assert event.sequence_no == 3
        assert event.sort_key == (1760000000123, 3, "D1")

    def test_malformed_event_raises(self):
        with pytest.raises(LedgerTransportException):
            parse_event(
                LedgerEventKind.DONATED,
                {"parsedJson": {"campaign": CAMPAIGN_ID, "amount": "lots"}},
            )


class TestReads:
    @pytest.mark.asyncio
    async def test_get_object(self):
        node = Node(rpc_result(campaign_object()))
        campaign = await make_service(node).get_object(CAMPAIGN_ID)

        assert campaign.state is CampaignState.FAILED
        assert campaign.raised == 40
        assert campaign.title == "My Great Cause"
        assert node.requests[0]["method"] == "sui_getObject"

    @pytest.mark.asyncio
    async def test_deleted_object_is_none(self):
        node = Node(rpc_result({"error": {"code": "deleted"}}))
        assert await make_service(node).get_object(CAMPAIGN_ID) is None

    @pytest.mark.asyncio
    async def test_malformed_object_raises(self):
        node = Node(rpc_result(campaign_object(goal=None)))
        with pytest.raises(LedgerTransportException):
            await make_service(node).get_object(CAMPAIGN_ID)

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        node = Node(
            httpx.ConnectError("refused"),
            rpc_result(campaign_object()),
        )
        campaign = await make_service(node).get_object(CAMPAIGN_ID)

        assert campaign is not None
        assert len(node.requests) == 2

    @pytest.mark.asyncio
    async def test_rpc_error_envelope_raises_after_retries(self):
        node = Node(rpc_error("boom"), rpc_error("boom"))
        with pytest.raises(LedgerTransportException, match="boom"):
            await make_service(node).get_object(CAMPAIGN_ID)

    @pytest.mark.asyncio
    async def test_query_events(self):
        node = Node(
            rpc_result(
                {
                    "data": [
                        {
                            "id": {"txDigest": "D", "eventSeq": "0"},
                            "timestampMs": "5",
                            "parsedJson": {"campaign": CAMPAIGN_ID, "amount": "9"},
                        },
                        {"parsedJson": {"unrelated": True}},
                    ],
                    "nextCursor": {"txDigest": "D", "eventSeq": "0"},
                    "hasNextPage": True,
                }
            )
        )
        page = await make_service(node).query_events(
            LedgerEventKind.DONATED, limit=10, order=EventOrder.DESCENDING
        )

        assert [e.amount for e in page.events] == [9]
        assert page.has_next_page
        params = node.requests[0]["params"]
        assert params[0] == {"MoveEventType": f"{PACKAGE_ID}::crowd::Donated"}
        assert params[2:] == [10, True]

    @pytest.mark.asyncio
    async def test_owned_receipts_newest_first(self):
        def receipt(object_id, ts):
            return {
                "data": {
                    "objectId": object_id,
                    "content": {
                        "dataType": "moveObject",
                        "fields": {
                            "campaign": CAMPAIGN_ID,
                            "donor": OWNER,
                            "amount": "10",
                            "ts_ms": str(ts),
                        },
                    },
                }
            }

        node = Node(
            rpc_result({"data": [receipt("0x1", 1), receipt("0x2", 2)], "hasNextPage": False})
        )
        receipts = await make_service(node).get_owned_receipts(OWNER)

        assert [r.id for r in receipts] == ["0x2", "0x1"]


class TestSubmission:
    @pytest.fixture
    def signer(self):
        signer = AsyncMock()
        signer.sign.return_value = SignedTransaction("dHg=", ["sig"])
        return signer

    @pytest.fixture
    def payload(self):
        return CrowdfundTransactions(PACKAGE_ID).withdraw(CAMPAIGN_ID)

    @pytest.mark.asyncio
    async def test_empty_payload_rejected_locally(self):
        node = Node()
        result = await make_service(node).submit_transaction(TransactionPayload())

        assert not result.accepted
        assert result.rejection.code is RejectionCode.EMPTY_TRANSACTION
        assert node.requests == []

    @pytest.mark.asyncio
    async def test_accepted(self, signer, payload):
        node = Node(
            rpc_result({"digest": "D9", "effects": {"status": {"status": "success"}}})
        )
        result = await make_service(node, signer).submit_transaction(payload)

        assert result.accepted
        assert result.digest == "D9"

    @pytest.mark.asyncio
    async def test_abort_in_effects(self, signer, payload):
        node = Node(
            rpc_result(
                {
                    "digest": "D9",
                    "effects": {
                        "status": {
                            "status": "failure",
                            "error": "MoveAbort(MoveLocation { module: x }, 7) in command 0",
                        }
                    },
                }
            )
        )
        result = await make_service(node, signer).submit_transaction(payload)

        assert not result.accepted
        assert result.rejection.abort_code == 7

    @pytest.mark.asyncio
    async def test_node_refusal_is_classified(self, signer, payload):
        node = Node(rpc_error("No function was found with function name force_succeeded"))
        result = await make_service(node, signer).submit_transaction(payload)

        assert result.rejection.code is RejectionCode.FUNCTION_NOT_FOUND
        assert len(node.requests) == 1

    @pytest.mark.asyncio
    async def test_signing_failure_is_a_rejection(self, signer, payload):
        signer.sign.side_effect = SigningRejected("Error: FunctionNotFound")
        result = await make_service(Node(), signer).submit_transaction(payload)

        assert result.rejection.code is RejectionCode.FUNCTION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_no_signer_raises(self, payload):
        with pytest.raises(LedgerTransportException):
            await make_service(Node()).submit_transaction(payload)


class TestFinality:
    @pytest.mark.asyncio
    async def test_finalized(self):
        node = Node(rpc_result({"effects": {"status": {"status": "success"}}}))
        assert await make_service(node).await_finality("D") is FinalityStatus.FINALIZED

    @pytest.mark.asyncio
    async def test_timeout_is_bounded(self):
        node = Node(rpc_error("not found"), rpc_error("not found"))
        status = await make_service(node).await_finality("D")

        assert status is FinalityStatus.TIMEOUT
        assert len(node.requests) == 2


class TestSuiCliSigner:
    def test_ptb_arguments(self):
        payload = CrowdfundTransactions(PACKAGE_ID).donate(CAMPAIGN_ID, 1500)
        args = SuiCliSigner(OWNER).ptb_arguments(payload)

        assert args[:5] == ["client", "ptb", "--split-coins", "gas", "[1500]"]
        call = args.index("--move-call")
        assert args[call + 1] == f"{PACKAGE_ID}::crowd::donate"
        assert args[call + 2 : call + 5] == [f"@{CAMPAIGN_ID}", "result_0.0", "@0x6"]
        assert args[-1] == "--serialize-unsigned-transaction"

    def test_metadata_blob_is_a_byte_vector(self):
        payload = CrowdfundTransactions(PACKAGE_ID).create_campaign(1, 2, "T", "D")
        args = SuiCliSigner(OWNER).ptb_arguments(payload)
        assert any(a.startswith("vector[123,") for a in args)
