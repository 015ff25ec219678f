"""
Ledger Service adapter.

Wraps the remote primitives the campaign core depends on:
1. Fetch a campaign object by id
2. Query events by type (type-scoped, never campaign-scoped)
3. Sign and submit a transaction
4. Await transaction finality
5. List donation receipts owned by an address

The adapter holds no business logic. It is the only place that interprets
raw RPC error text: failures are turned into structured RejectionReason
values here so the rest of the toolkit routes on codes, never on strings.

SuiLedgerService speaks Sui JSON-RPC over the shared httpx client.
"""

import abc
import asyncio
import base64
import itertools
import json
import re
import shutil
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from crowdfund_toolkit.campaigns.models import (
    Campaign,
    CampaignState,
    DonationReceipt,
    EventOrder,
    EventPage,
    FinalityStatus,
    LedgerEvent,
    LedgerEventKind,
    RejectionCode,
    RejectionReason,
    SubmissionResult,
)
from crowdfund_toolkit.campaigns.transactions import (
    MoveCall,
    ObjectArg,
    PureArg,
    ResultArg,
    SplitCoins,
    TransactionPayload,
)
from crowdfund_toolkit.shared.constants import (
    FINALITY_POLICY,
    CrowdfundConstants,
)
from crowdfund_toolkit.shared.exceptions import LedgerTransportException
from crowdfund_toolkit.shared.logging import get_logger
from crowdfund_toolkit.shared.retry import (
    RPC_RETRY_CONFIG,
    PollPolicy,
    RetryConfig,
    poll_until,
    retry_async_operation,
)
from crowdfund_toolkit.shared.services.http_client import get_async_client

logger = get_logger(__name__)


# =============================================================================
# INTERFACES
# =============================================================================


class LedgerService(abc.ABC):
    """Remote primitives consumed by the campaign core."""

    @abc.abstractmethod
    async def get_object(self, object_id: str) -> Optional[Campaign]:
        """Return the campaign snapshot, or None when the object does not exist."""

    @abc.abstractmethod
    async def query_events(
        self,
        kind: LedgerEventKind,
        limit: int = CrowdfundConstants.EVENT_PAGE_LIMIT,
        order: EventOrder = EventOrder.ASCENDING,
        cursor: Optional[Dict[str, Any]] = None,
    ) -> EventPage:
        """Return one page of events of a single kind, across all campaigns."""

    @abc.abstractmethod
    async def submit_transaction(
        self, payload: TransactionPayload
    ) -> SubmissionResult:
        """Sign and submit. Rejections are returned, transport failures raised."""

    @abc.abstractmethod
    async def await_finality(self, digest: str) -> FinalityStatus:
        """Wait (bounded) until the transaction's effects are durable."""

    @abc.abstractmethod
    async def get_owned_receipts(self, owner: str) -> List[DonationReceipt]:
        """Donation receipts currently owned by ``owner``, newest first."""


@dataclass(frozen=True)
class SignedTransaction:
    tx_bytes: str  # base64
    signatures: List[str]


class SigningRejected(Exception):
    """The signer could not build or sign the transaction."""


class TransactionSigner(abc.ABC):
    """Turns a payload into signed transaction bytes (the wallet's job)."""

    @property
    @abc.abstractmethod
    def sender(self) -> str:
        ...

    @abc.abstractmethod
    async def sign(self, payload: TransactionPayload) -> SignedTransaction:
        ...


# =============================================================================
# FAILURE CLASSIFICATION
# =============================================================================

_MOVE_ABORT = re.compile(r"MoveAbort\(.*\},\s*(\d+)\)", re.DOTALL)
_FUNCTION_NOT_FOUND = re.compile(
    r"FunctionNotFound|EntryFunctionNotFound|No function was found"
    r"|Could not resolve function|function not found",
    re.IGNORECASE,
)
_INSUFFICIENT_GAS = re.compile(r"InsufficientGas|insufficient gas", re.IGNORECASE)
_OBJECT_NOT_FOUND = re.compile(
    r"ObjectNotFound|notExists|does not exist", re.IGNORECASE
)


def classify_failure(message: str) -> RejectionReason:
    """Map raw failure text from the node or the signer to a structured reason."""
    text = message or ""
    abort = _MOVE_ABORT.search(text)
    if abort:
        return RejectionReason(
            code=RejectionCode.MOVE_ABORT,
            message=text,
            abort_code=int(abort.group(1)),
        )
    if _FUNCTION_NOT_FOUND.search(text):
        return RejectionReason(code=RejectionCode.FUNCTION_NOT_FOUND, message=text)
    if _INSUFFICIENT_GAS.search(text):
        return RejectionReason(code=RejectionCode.INSUFFICIENT_GAS, message=text)
    if _OBJECT_NOT_FOUND.search(text):
        return RejectionReason(code=RejectionCode.OBJECT_NOT_FOUND, message=text)
    return RejectionReason(code=RejectionCode.UNKNOWN, message=text)


# =============================================================================
# RESPONSE PARSING
# =============================================================================


class JsonRpcError(LedgerTransportException):
    """The node answered with a JSON-RPC error envelope."""

    def __init__(self, method: str, code: Any, message: str):
        super().__init__(f"{method} failed ({code}): {message}", method=method)
        self.code = code
        self.rpc_message = message


def _as_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def parse_campaign(object_id: str, fields: Dict[str, Any]) -> Campaign:
    """Normalize the Move fields of a Campaign object."""
    try:
        return Campaign(
            id=object_id,
            owner=fields["owner"],
            goal=int(fields["goal"]),
            raised=int(fields.get("raised", 0)),
            deadline_ms=int(fields["deadline_ms"]),
            state=CampaignState(int(fields["state"])),
            withdrawn=bool(fields.get("withdrawn", False)),
            metadata_blob=_as_bytes(fields.get("metadata_cid")),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise LedgerTransportException(
            f"Malformed campaign object {object_id}: {e}", method="sui_getObject"
        ) from e


def parse_event(kind: LedgerEventKind, raw: Dict[str, Any]) -> Optional[LedgerEvent]:
    """Normalize one event envelope; None when it references no campaign."""
    parsed = raw.get("parsedJson")
    if not isinstance(parsed, dict) or not parsed.get("campaign"):
        return None

    event_id = raw.get("id") or {}
    amount = parsed.get("amount")
    try:
        return LedgerEvent(
            kind=kind,
            campaign_id=parsed["campaign"],
            amount=int(amount) if amount is not None else None,
            timestamp_ms=int(raw.get("timestampMs") or 0),
            sequence_no=int(event_id.get("eventSeq") or 0),
            tx_digest=event_id.get("txDigest", ""),
            data=parsed,
        )
    except (TypeError, ValueError) as e:
        raise LedgerTransportException(
            f"Malformed {kind.value} event: {e}", method="suix_queryEvents"
        ) from e


def parse_receipt(object_id: str, fields: Dict[str, Any]) -> DonationReceipt:
    try:
        return DonationReceipt(
            id=object_id,
            campaign_id=fields["campaign"],
            donor=fields["donor"],
            amount=int(fields["amount"]),
            timestamp_ms=int(fields["ts_ms"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise LedgerTransportException(
            f"Malformed donation receipt {object_id}: {e}",
            method="suix_getOwnedObjects",
        ) from e


# =============================================================================
# SUI JSON-RPC
# =============================================================================


class SuiLedgerService(LedgerService):
    """
    Ledger Service backed by a Sui full node.

    Attributes:
        rpc_url: JSON-RPC endpoint
        package_id: Deployed crowdfunding package
        signer: Optional signer; required only for submissions
    """

    _ids = itertools.count(1)

    def __init__(
        self,
        rpc_url: str,
        package_id: str,
        signer: Optional[TransactionSigner] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_config: RetryConfig = RPC_RETRY_CONFIG,
        finality_policy: PollPolicy = FINALITY_POLICY,
        module: str = CrowdfundConstants.MODULE,
    ):
        self.rpc_url = rpc_url
        self.package_id = package_id
        self.signer = signer
        self.module = module
        self.retry_config = retry_config
        self.finality_policy = finality_policy
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = get_async_client()
        return self._client

    def event_type(self, kind: LedgerEventKind) -> str:
        return f"{self.package_id}::{self.module}::{kind.value}"

    async def _call(self, method: str, params: List[Any]) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self.client.post(self.rpc_url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise LedgerTransportException(
                f"{method} request failed: {e}", method=method
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise LedgerTransportException(
                f"{method} returned a non-JSON body", method=method
            ) from e

        if not isinstance(payload, dict):
            raise LedgerTransportException(
                f"{method} returned an unexpected body", method=method
            )
        if payload.get("error"):
            error = payload["error"]
            raise JsonRpcError(method, error.get("code"), error.get("message", ""))
        if "result" not in payload:
            raise LedgerTransportException(
                f"{method} response has no result", method=method
            )
        return payload["result"]

    async def _read(self, method: str, params: List[Any]) -> Any:
        return await retry_async_operation(
            self._call,
            method,
            params,
            max_attempts=self.retry_config.max_attempts,
            base_delay=self.retry_config.base_delay,
            max_delay=self.retry_config.max_delay,
            exponential=self.retry_config.exponential,
            retryable_exceptions=self.retry_config.retryable_exceptions,
            operation_name=method,
        )

    async def get_object(self, object_id: str) -> Optional[Campaign]:
        result = await self._read(
            "sui_getObject",
            [object_id, {"showContent": True, "showType": True}],
        )
        if result.get("error"):
            logger.debug(f"Object {object_id} not found: {result['error']}")
            return None

        content = (result.get("data") or {}).get("content") or {}
        if content.get("dataType") != "moveObject":
            return None
        return parse_campaign(object_id, content.get("fields") or {})

    async def query_events(
        self,
        kind: LedgerEventKind,
        limit: int = CrowdfundConstants.EVENT_PAGE_LIMIT,
        order: EventOrder = EventOrder.ASCENDING,
        cursor: Optional[Dict[str, Any]] = None,
    ) -> EventPage:
        result = await self._read(
            "suix_queryEvents",
            [
                {"MoveEventType": self.event_type(kind)},
                cursor,
                limit,
                order is EventOrder.DESCENDING,
            ],
        )
        events = []
        for raw in result.get("data") or []:
            event = parse_event(kind, raw)
            if event is not None:
                events.append(event)
        return EventPage(
            events=events,
            next_cursor=result.get("nextCursor"),
            has_next_page=bool(result.get("hasNextPage")),
        )

    async def get_owned_receipts(self, owner: str) -> List[DonationReceipt]:
        receipts: List[DonationReceipt] = []
        cursor = None
        for _ in range(CrowdfundConstants.MAX_EVENT_PAGES):
            result = await self._read(
                "suix_getOwnedObjects",
                [
                    owner,
                    {
                        "filter": {
                            "StructType": f"{self.package_id}::{self.module}::DonationReceipt"
                        },
                        "options": {"showContent": True, "showType": True},
                    },
                    cursor,
                    CrowdfundConstants.EVENT_PAGE_LIMIT,
                ],
            )
            for item in result.get("data") or []:
                data = item.get("data") or {}
                content = data.get("content") or {}
                if content.get("dataType") != "moveObject":
                    continue
                receipts.append(
                    parse_receipt(data["objectId"], content.get("fields") or {})
                )
            cursor = result.get("nextCursor")
            if not result.get("hasNextPage"):
                break

        return sorted(receipts, key=lambda r: r.timestamp_ms, reverse=True)

    async def submit_transaction(
        self, payload: TransactionPayload
    ) -> SubmissionResult:
        if payload.is_empty():
            return SubmissionResult(
                accepted=False,
                rejection=RejectionReason(code=RejectionCode.EMPTY_TRANSACTION),
            )
        if self.signer is None:
            raise LedgerTransportException(
                "No signer configured for submissions",
                method="sui_executeTransactionBlock",
            )

        try:
            signed = await self.signer.sign(payload)
        except SigningRejected as e:
            return SubmissionResult(accepted=False, rejection=classify_failure(str(e)))

        try:
            result = await self._call(
                "sui_executeTransactionBlock",
                [
                    signed.tx_bytes,
                    signed.signatures,
                    {"showEffects": True, "showEvents": True},
                    "WaitForEffectsCert",
                ],
            )
        except JsonRpcError as e:
            # The node answered and refused the transaction
            return SubmissionResult(
                accepted=False, rejection=classify_failure(e.rpc_message)
            )

        digest = result.get("digest")
        status = ((result.get("effects") or {}).get("status")) or {}
        if status.get("status") == "failure":
            return SubmissionResult(
                accepted=False,
                digest=digest,
                rejection=classify_failure(status.get("error", "")),
            )
        return SubmissionResult(accepted=True, digest=digest)

    async def await_finality(self, digest: str) -> FinalityStatus:
        async def lookup() -> bool:
            result = await self._call(
                "sui_getTransactionBlock",
                [digest, {"showEffects": True}],
            )
            return bool(result.get("effects"))

        _, finalized = await poll_until(
            lookup, self.finality_policy, operation_name=f"finality {digest}"
        )
        return FinalityStatus.FINALIZED if finalized else FinalityStatus.TIMEOUT


# =============================================================================
# SIGNER
# =============================================================================


class SuiCliSigner(TransactionSigner):
    """
    Signs with the ``sui`` binary and its local keystore.

    Builds the programmable transaction with ``sui client ptb
    --serialize-unsigned-transaction`` and signs the bytes with
    ``sui keytool sign``.
    """

    def __init__(self, address: str, sui_binary: str = "sui"):
        self.address = address
        self.sui_binary = sui_binary

    @property
    def sender(self) -> str:
        return self.address

    @staticmethod
    def _format_argument(arg) -> str:
        if isinstance(arg, ObjectArg):
            return f"@{arg.object_id}"
        if isinstance(arg, ResultArg):
            return f"result_{arg.command}.{arg.index}"
        if isinstance(arg, PureArg):
            if arg.type == "vector<u8>":
                return "vector[" + ",".join(str(b) for b in arg.value) + "]"
            return str(arg.value)
        raise ValueError(f"Unsupported argument: {arg!r}")

    def ptb_arguments(self, payload: TransactionPayload) -> List[str]:
        """Command line for ``sui client ptb`` describing ``payload``."""
        args: List[str] = ["client", "ptb"]
        for index, command in enumerate(payload.commands):
            if isinstance(command, SplitCoins):
                amounts = ",".join(str(a) for a in command.amounts)
                args += ["--split-coins", "gas", f"[{amounts}]"]
            elif isinstance(command, MoveCall):
                args += ["--move-call", command.target]
                args += [self._format_argument(a) for a in command.arguments]
            args += ["--assign", f"result_{index}"]
        args += [
            "--sender",
            f"@{self.address}",
            "--gas-budget",
            str(payload.gas_budget),
            "--serialize-unsigned-transaction",
        ]
        return args

    async def _run(self, *args: str) -> str:
        if shutil.which(self.sui_binary) is None:
            raise SigningRejected(f"'{self.sui_binary}' binary not found on PATH")

        process = await asyncio.create_subprocess_exec(
            self.sui_binary,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise SigningRejected(
                stderr.decode("utf-8", "replace") or stdout.decode("utf-8", "replace")
            )
        return stdout.decode("utf-8").strip()

    async def sign(self, payload: TransactionPayload) -> SignedTransaction:
        output = await self._run(*self.ptb_arguments(payload))
        tx_bytes = output.splitlines()[-1].strip()
        try:
            base64.b64decode(tx_bytes, validate=True)
        except ValueError as e:
            raise SigningRejected(f"Unexpected ptb output: {output[:200]}") from e

        signed = await self._run(
            "keytool", "sign", "--address", self.address, "--data", tx_bytes, "--json"
        )
        try:
            signature = json.loads(signed)["suiSignature"]
        except (ValueError, KeyError, TypeError) as e:
            raise SigningRejected(f"Unexpected keytool output: {signed[:200]}") from e

        return SignedTransaction(tx_bytes=tx_bytes, signatures=[signature])
