"""Pytest configuration and fixtures."""

import base64
import json
import os
from typing import Callable, Optional, Union

import httpx
import pytest
import pytest_asyncio
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

# Set test environment
os.environ["SOLSWAP_ENVIRONMENT"] = "test"
os.environ["SOLSWAP_DRY_RUN"] = "true"

from solswap.config import Settings
from solswap.context import ServiceContext
from solswap.ledger.base import LedgerClient, SignatureStatus
from solswap.models import Commitment

TRADE_API = "https://trade.test"
FEE_API = "https://api.test"
RPC_URL = "https://rpc.test"


def build_unsigned_tx(payer: Pubkey, *other_signers: Pubkey) -> bytes:
    """Serialize an unsigned v0 transaction paid by ``payer``.

    Each extra signer moves lamports, which makes it a required signer.
    """
    instructions = [
        transfer(TransferParams(from_pubkey=signer, to_pubkey=Pubkey.new_unique(), lamports=1_000))
        for signer in (payer, *other_signers)
    ]
    message = MessageV0.try_compile(payer, instructions, [], Hash.new_unique())
    placeholders = [Signature.default()] * message.header.num_required_signatures
    return bytes(VersionedTransaction.populate(message, placeholders))


def b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode()


Reply = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeTradeApi:
    """httpx.MockTransport handler for the quote, fee and build endpoints.

    Responses can be replaced per endpoint through ``overrides``.
    """

    def __init__(self, legs: int = 1, extra_signers: Optional[dict[int, Pubkey]] = None):
        self.legs = legs
        self.extra_signers = extra_signers or {}
        self.requests: list[httpx.Request] = []
        self.overrides: dict[str, Reply] = {}
        self.output_amount = 150_000_000

    def calls(self, endpoint: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(endpoint)]

    def quote(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        return httpx.Response(200, json={
            "id": "quote-1",
            "success": True,
            "version": "V1",
            "data": {
                "swapType": "BaseIn",
                "inputMint": params["inputMint"],
                "inputAmount": params["amount"],
                "outputMint": params["outputMint"],
                "outputAmount": str(self.output_amount),
                "otherAmountThreshold": str(self.output_amount * 99 // 100),
                "slippageBps": int(params["slippageBps"]),
                "priceImpactPct": 0.02,
                "routePlan": [{
                    "poolId": "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2",
                    "inputMint": params["inputMint"],
                    "outputMint": params["outputMint"],
                }],
            },
        })

    def fee(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "id": "fee-1",
            "success": True,
            "data": {"default": {"vh": 300_000, "h": 150_000, "m": 50_000}},
        })

    def build(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        wallet = Pubkey.from_string(body["wallet"])
        transactions = []
        for leg in range(1, self.legs + 1):
            others = [self.extra_signers[leg]] if leg in self.extra_signers else []
            transactions.append({"transaction": b64(build_unsigned_tx(wallet, *others))})
        return httpx.Response(200, json={"id": "tx-1", "success": True, "data": transactions})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        routes = {
            "compute/swap-base-in": self.quote,
            "main/auto-fee": self.fee,
            "transaction/swap-base-in": self.build,
        }
        for endpoint, default in routes.items():
            if request.url.path.endswith(endpoint):
                reply = self.overrides.get(endpoint, default)
                return reply(request) if callable(reply) else reply
        return httpx.Response(404, json={"success": False, "msg": "not found"})


class FakeLedger(LedgerClient):
    """Scriptable ledger.

    ``send_outcomes`` is consumed one item per send: None accepts, an
    exception is raised. ``status_scripts`` maps the n-th distinct submitted
    transaction (1-based) to the statuses returned on successive polls; the
    last entry repeats. Unscripted transactions confirm on the first poll.
    """

    def __init__(self):
        self.send_outcomes: list = []
        self.status_scripts: dict[int, list] = {}
        self.sent: list[str] = []
        self.order: dict[str, int] = {}
        self.status_calls = 0
        self.fees: dict[str, int] = {}
        self.default_fee: Optional[int] = None

    @property
    def name(self) -> str:
        return "fake"

    @property
    def sent_signatures(self) -> list[str]:
        return [str(VersionedTransaction.from_bytes(base64.b64decode(b)).signatures[0]) for b in self.sent]

    async def send_transaction(self, blob_base64: str, preflight_commitment: Commitment) -> str:
        self.sent.append(blob_base64)
        signature = str(VersionedTransaction.from_bytes(base64.b64decode(blob_base64)).signatures[0])
        self.order.setdefault(signature, len(self.order) + 1)
        if self.send_outcomes:
            outcome = self.send_outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
        return signature

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        self.status_calls += 1
        script = self.status_scripts.get(self.order.get(signature, 0))
        if script is None:
            if signature not in self.order:
                return None
            return confirmed_status()
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def get_transaction_fee(self, signature: str, commitment: Commitment) -> Optional[int]:
        return self.fees.get(signature, self.default_fee)


def confirmed_status(slot: int = 100, level: Commitment = Commitment.CONFIRMED) -> SignatureStatus:
    return SignatureStatus(slot=slot, confirmations=1, err=None, confirmation_status=level)


def failed_status(slot: int = 100) -> SignatureStatus:
    return SignatureStatus(
        slot=slot,
        confirmations=1,
        err={"InstructionError": [2, {"Custom": 6001}]},
        confirmation_status=Commitment.CONFIRMED,
    )


@pytest.fixture
def settings() -> Settings:
    """Settings with fast polling and no retry backoff."""
    return Settings(
        _env_file=None,
        environment="test",
        raydium_trade_api_url=TRADE_API,
        raydium_api_url=FEE_API,
        solana_rpc_url=RPC_URL,
        dry_run=True,
        poll_interval_seconds=0.01,
        poll_max_attempts=5,
        broadcast_retry_backoff_seconds=0,
        default_budget_seconds=10,
    )


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()


@pytest.fixture
def trade_api() -> FakeTradeApi:
    return FakeTradeApi()


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest_asyncio.fixture
async def ctx(settings, trade_api):
    """Service context whose HTTP client is served by ``trade_api``."""
    http = httpx.AsyncClient(transport=httpx.MockTransport(trade_api))
    context = ServiceContext(settings, http=http)
    yield context
    await http.aclose()
