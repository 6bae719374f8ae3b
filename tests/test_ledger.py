"""Tests for the RPC client, broadcaster, poller and dry-run ledger."""

import asyncio
import base64
import json
import time

import httpx
import pytest
import pytest_asyncio

from solswap.context import ServiceContext
from solswap.errors import BroadcastAmbiguous, BroadcastRejected, BroadcastTimedOut
from solswap.ledger import (
    Broadcaster,
    ConfirmationPoller,
    DryRunRpcClient,
    LedgerTransportError,
    RpcRejected,
    SolanaRpcClient,
)
from solswap.models import AssembledTransaction, Commitment, ConfirmationStatus
from solswap.signing import InMemoryKeyProvider, Signer
from solswap.utils.deadline import Budget

from conftest import FakeLedger, build_unsigned_tx, confirmed_status, failed_status


def sign_one(keypair, legs: int = 1):
    blobs = tuple(build_unsigned_tx(keypair.pubkey()) for _ in range(legs))
    signed = Signer(InMemoryKeyProvider({"k": keypair})).sign(AssembledTransaction(blobs=blobs), "k")
    return signed if legs > 1 else signed[0]


class RpcServer:
    """MockTransport handler answering JSON-RPC calls from a reply table."""

    def __init__(self):
        self.calls: list[dict] = []
        self.replies: dict = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        reply = self.replies[body["method"]]
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], **reply})


@pytest.fixture
def rpc_server():
    return RpcServer()


@pytest_asyncio.fixture
async def rpc(settings, rpc_server):
    http = httpx.AsyncClient(transport=httpx.MockTransport(rpc_server))
    yield SolanaRpcClient(ServiceContext(settings, http=http))
    await http.aclose()


class TestSolanaRpcClient:
    """Tests for SolanaRpcClient."""

    @pytest.mark.asyncio
    async def test_send_transaction(self, rpc, rpc_server):
        rpc_server.replies["sendTransaction"] = {"result": "5sig"}

        signature = await rpc.send_transaction("AAAA", Commitment.CONFIRMED)

        assert signature == "5sig"
        params = rpc_server.calls[0]["params"]
        assert params[0] == "AAAA"
        assert params[1] == {
            "encoding": "base64",
            "skipPreflight": False,
            "preflightCommitment": "confirmed",
            "maxRetries": 0,
        }
        assert rpc.ctx.meter.count("solana", "sendTransaction") == 1

    @pytest.mark.asyncio
    async def test_rpc_error_is_rejection(self, rpc, rpc_server):
        rpc_server.replies["sendTransaction"] = {
            "error": {"code": -32002, "message": "Transaction simulation failed", "data": {"logs": []}}
        }
        with pytest.raises(RpcRejected) as exc_info:
            await rpc.send_transaction("AAAA", Commitment.CONFIRMED)
        assert exc_info.value.code == -32002

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_throttling_and_server_errors_are_transport(self, rpc, rpc_server, status):
        rpc_server.replies["sendTransaction"] = httpx.Response(status, text="busy")
        with pytest.raises(LedgerTransportError) as exc_info:
            await rpc.send_transaction("AAAA", Commitment.CONFIRMED)
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_signature_status_unknown(self, rpc, rpc_server):
        rpc_server.replies["getSignatureStatuses"] = {
            "result": {"context": {"slot": 1}, "value": [None]}
        }
        assert await rpc.get_signature_status("sig") is None
        assert rpc_server.calls[0]["params"] == [["sig"], {"searchTransactionHistory": True}]

    @pytest.mark.asyncio
    async def test_signature_status(self, rpc, rpc_server):
        rpc_server.replies["getSignatureStatuses"] = {
            "result": {"context": {"slot": 9}, "value": [{
                "slot": 7, "confirmations": 3, "err": None, "confirmationStatus": "confirmed",
            }]}
        }
        status = await rpc.get_signature_status("sig")
        assert status.slot == 7
        assert status.err is None
        assert status.confirmation_status is Commitment.CONFIRMED

    @pytest.mark.asyncio
    async def test_transaction_fee(self, rpc, rpc_server):
        rpc_server.replies["getTransaction"] = {"result": {"slot": 7, "meta": {"fee": 65000, "err": None}}}

        assert await rpc.get_transaction_fee("sig", Commitment.PROCESSED) == 65000
        assert rpc_server.calls[0]["params"][1]["commitment"] == "confirmed"

    @pytest.mark.asyncio
    async def test_transaction_fee_unknown(self, rpc, rpc_server):
        rpc_server.replies["getTransaction"] = {"result": None}
        assert await rpc.get_transaction_fee("sig", Commitment.FINALIZED) is None


class TestBroadcaster:
    """Tests for Broadcaster retry policy."""

    @pytest.mark.asyncio
    async def test_accepted_first_time(self, keypair, fake_ledger):
        signed = sign_one(keypair)
        receipt = await Broadcaster(fake_ledger, backoff_seconds=0).broadcast(signed)

        assert receipt.signature == signed.signature
        assert receipt.attempts == 1
        assert fake_ledger.sent == [signed.to_base64()]

    @pytest.mark.asyncio
    async def test_ambiguous_twice_then_accepted(self, keypair, fake_ledger):
        signed = sign_one(keypair)
        fake_ledger.send_outcomes = [
            LedgerTransportError("HTTP 503", status_code=503),
            asyncio.TimeoutError(),
            None,
        ]

        receipt = await Broadcaster(fake_ledger, max_retries=2, backoff_seconds=0).broadcast(signed)

        assert receipt.attempts == 3
        # Same bytes every time
        assert fake_ledger.sent == [signed.to_base64()] * 3

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self, keypair, fake_ledger):
        signed = sign_one(keypair)
        fake_ledger.send_outcomes = [RpcRejected("Blockhash not found", code=-32002)]

        with pytest.raises(BroadcastRejected) as exc_info:
            await Broadcaster(fake_ledger, backoff_seconds=0).broadcast(signed)

        assert exc_info.value.attempts == 1
        assert exc_info.value.stage == "broadcast"
        assert len(fake_ledger.sent) == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, keypair, fake_ledger):
        signed = sign_one(keypair)
        fake_ledger.send_outcomes = [LedgerTransportError("reset")] * 3

        with pytest.raises(BroadcastAmbiguous) as exc_info:
            await Broadcaster(fake_ledger, max_retries=2, backoff_seconds=0).broadcast(signed)

        assert exc_info.value.attempts == 3
        assert exc_info.value.signature == signed.signature
        assert len(fake_ledger.sent) == 3

    @pytest.mark.asyncio
    async def test_slow_node_times_out_per_budget(self, keypair):
        class HangingLedger(FakeLedger):
            async def send_transaction(self, blob_base64, preflight_commitment):
                self.sent.append(blob_base64)
                await asyncio.sleep(10)

        ledger = HangingLedger()
        started = time.monotonic()
        with pytest.raises(BroadcastAmbiguous):
            await Broadcaster(ledger, max_retries=2, backoff_seconds=0).broadcast(
                sign_one(keypair), budget=Budget(0.1)
            )
        assert time.monotonic() - started < 1.0
        assert 1 <= len(ledger.sent) <= 3

    @pytest.mark.asyncio
    async def test_exhausted_budget_sends_nothing(self, keypair, fake_ledger):
        with pytest.raises(BroadcastTimedOut) as exc_info:
            await Broadcaster(fake_ledger).broadcast(sign_one(keypair), budget=Budget(0))
        assert exc_info.value.stage == "broadcast"
        assert exc_info.value.code == "BroadcastTimedOut"
        assert fake_ledger.sent == []

    @pytest.mark.asyncio
    async def test_leg_stage(self, keypair, fake_ledger):
        legs = sign_one(keypair, legs=2)
        fake_ledger.send_outcomes = [RpcRejected("insufficient funds")]
        with pytest.raises(BroadcastRejected) as exc_info:
            await Broadcaster(fake_ledger).broadcast(legs[0])
        assert exc_info.value.stage == "leg-1"


class TestConfirmationPoller:
    """Tests for ConfirmationPoller."""

    @pytest.mark.asyncio
    async def test_confirmed(self, keypair, fake_ledger):
        signature = await fake_ledger.send_transaction(sign_one(keypair).to_base64(), Commitment.CONFIRMED)
        fake_ledger.status_scripts[1] = [None, confirmed_status(level=Commitment.PROCESSED), confirmed_status(slot=42)]

        result = await ConfirmationPoller(fake_ledger, interval=0.01, max_polls=10).wait(signature)

        assert result.status is ConfirmationStatus.CONFIRMED
        assert result.slot == 42
        assert result.polls == 3

    @pytest.mark.asyncio
    async def test_on_chain_error_stops_immediately(self, keypair, fake_ledger):
        signature = await fake_ledger.send_transaction(sign_one(keypair).to_base64(), Commitment.CONFIRMED)
        fake_ledger.status_scripts[1] = [failed_status()]

        result = await ConfirmationPoller(fake_ledger, interval=0.01, max_polls=10).wait(signature)

        assert result.status is ConfirmationStatus.FAILED
        assert result.error == {"InstructionError": [2, {"Custom": 6001}]}
        assert fake_ledger.status_calls == 1

    @pytest.mark.asyncio
    async def test_never_seen(self, fake_ledger):
        result = await ConfirmationPoller(fake_ledger, interval=0.01, max_polls=4).wait("unknown")

        assert result.status is ConfirmationStatus.TIMED_OUT
        assert result.polls == 4
        assert fake_ledger.status_calls == 4

    @pytest.mark.asyncio
    async def test_transport_errors_keep_polling(self, keypair, fake_ledger):
        signature = await fake_ledger.send_transaction(sign_one(keypair).to_base64(), Commitment.CONFIRMED)
        fake_ledger.status_scripts[1] = [LedgerTransportError("reset"), confirmed_status()]

        result = await ConfirmationPoller(fake_ledger, interval=0.01, max_polls=5).wait(signature)

        assert result.status is ConfirmationStatus.CONFIRMED
        assert result.polls == 2

    @pytest.mark.asyncio
    async def test_waits_for_requested_commitment(self, keypair, fake_ledger):
        signature = await fake_ledger.send_transaction(sign_one(keypair).to_base64(), Commitment.CONFIRMED)
        fake_ledger.status_scripts[1] = [confirmed_status(level=Commitment.CONFIRMED)]

        result = await ConfirmationPoller(fake_ledger, interval=0.01, max_polls=3).wait(
            signature, Commitment.FINALIZED
        )

        assert result.status is ConfirmationStatus.TIMED_OUT
        assert result.commitment is Commitment.CONFIRMED

    @pytest.mark.asyncio
    async def test_bounded_by_max_polls_times_interval(self):
        class SlowLedger(FakeLedger):
            async def get_signature_status(self, signature):
                self.status_calls += 1
                await asyncio.sleep(5)

        ledger = SlowLedger()
        started = time.monotonic()
        result = await ConfirmationPoller(ledger, interval=0.05, max_polls=4).wait("sig")
        elapsed = time.monotonic() - started

        assert result.status is ConfirmationStatus.TIMED_OUT
        assert ledger.status_calls == 4
        assert elapsed < 4 * 0.05 + 0.15

    @pytest.mark.asyncio
    async def test_budget_cuts_polling_short(self, fake_ledger):
        started = time.monotonic()
        result = await ConfirmationPoller(fake_ledger, interval=0.05, max_polls=100).wait(
            "unknown", budget=Budget(0.12)
        )
        assert result.status is ConfirmationStatus.TIMED_OUT
        assert result.polls < 100
        assert time.monotonic() - started < 0.5

    def test_rejects_bad_parameters(self, fake_ledger):
        with pytest.raises(ValueError):
            ConfirmationPoller(fake_ledger, interval=0, max_polls=1)


class TestDryRunLedger:
    """Tests for the simulated ledger."""

    @pytest.mark.asyncio
    async def test_progression(self, keypair):
        ledger = DryRunRpcClient()
        signed = sign_one(keypair)

        signature = await ledger.send_transaction(signed.to_base64(), Commitment.CONFIRMED)
        assert signature == signed.signature

        levels = []
        for _ in range(5):
            status = await ledger.get_signature_status(signature)
            levels.append(status.confirmation_status if status else None)
        assert levels == [
            None,
            Commitment.PROCESSED,
            Commitment.CONFIRMED,
            Commitment.FINALIZED,
            Commitment.FINALIZED,
        ]
        assert await ledger.get_transaction_fee(signature, Commitment.CONFIRMED) == 5000

    @pytest.mark.asyncio
    async def test_unknown_signature(self):
        assert await DryRunRpcClient().get_signature_status("nope") is None

    @pytest.mark.asyncio
    async def test_garbage_rejected(self):
        with pytest.raises(RpcRejected):
            await DryRunRpcClient().send_transaction(base64.b64encode(b"junk").decode(), Commitment.CONFIRMED)

    @pytest.mark.asyncio
    async def test_poller_confirms_dry_run(self, keypair):
        ledger = DryRunRpcClient()
        signed = sign_one(keypair)
        signature = await ledger.send_transaction(signed.to_base64(), Commitment.CONFIRMED)

        result = await ConfirmationPoller(ledger, interval=0.01, max_polls=5).wait(signature)

        assert result.status is ConfirmationStatus.CONFIRMED
        assert result.polls == 3
