"""
Unit tests for PaymentVerifier.

Tests on-chain receipt checks against a mocked JSON-RPC endpoint:
- Transfer log matching (token contract, treasury, amount)
- Tolerance and match policy
- Replay protection
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from compute_gateway.core.config import PaymentNetwork
from compute_gateway.database.memory_store import InMemoryStore
from compute_gateway.models.balance import UsedTransaction
from compute_gateway.models.job import PaymentProof
from compute_gateway.services.payment_verifier import (
    TRANSFER_EVENT_TOPIC,
    PaymentVerifier,
    topic_to_address,
)

TREASURY = "0x1111111111111111111111111111111111111111"
PAYER = "0x2222222222222222222222222222222222222222"
TOKEN = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
TX_HASH = "0x" + "ab" * 32


def pad_topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def transfer_log(amount_usd: float, to: str = TREASURY, token: str = TOKEN) -> dict:
    return {
        "address": token,
        "topics": [TRANSFER_EVENT_TOPIC, pad_topic(PAYER), pad_topic(to)],
        "data": hex(int(round(amount_usd * 10**6))),
    }


def receipt(*logs: dict, status: str = "0x1") -> dict:
    return {"transactionHash": TX_HASH, "status": status, "logs": list(logs)}


def rpc_client(result: dict | None) -> AsyncMock:
    """AsyncClient mock whose post() returns a JSON-RPC envelope"""
    response = Mock()
    response.raise_for_status = Mock()
    response.json = Mock(return_value={"jsonrpc": "2.0", "id": 1, "result": result})
    client = AsyncMock()
    client.post = AsyncMock(return_value=response)
    return client


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def networks():
    return {"base": PaymentNetwork(rpc_url="https://rpc.example", token_address=TOKEN)}


@pytest.fixture
def verifier(store, networks):
    return PaymentVerifier(store, networks=networks, treasury_wallet=TREASURY)


@pytest.fixture
def proof():
    return PaymentProof(tx_hash=TX_HASH, network="base", amount_usd=5.0)


class TestTopicToAddress:
    def test_strips_padding(self):
        assert topic_to_address(pad_topic(TREASURY)) == TREASURY


class TestPaymentVerifierInit:
    """Test client ownership"""

    def test_owns_client_by_default(self, verifier):
        assert verifier._client is None
        assert verifier._owns_client is True

    @pytest.mark.asyncio
    async def test_external_client_not_closed(self, store, networks):
        client = AsyncMock()
        verifier = PaymentVerifier(store, networks, TREASURY, client=client)

        await verifier.close()

        client.aclose.assert_not_awaited()


class TestVerifyRejections:
    """Test rejection reasons"""

    @pytest.mark.asyncio
    async def test_unsupported_network(self, verifier):
        proof = PaymentProof(tx_hash=TX_HASH, network="solana", amount_usd=5.0)

        result = await verifier.verify(proof, PAYER)

        assert result.valid is False
        assert result.error == "Unsupported network: solana"

    @pytest.mark.asyncio
    async def test_missing_hash(self, verifier):
        proof = PaymentProof(tx_hash="", network="base", amount_usd=5.0)

        result = await verifier.verify(proof, PAYER)

        assert result.error == "Missing txHash or network"

    @pytest.mark.asyncio
    async def test_no_treasury_configured(self, store, networks, proof):
        verifier = PaymentVerifier(store, networks, treasury_wallet="")

        result = await verifier.verify(proof, PAYER)

        assert result.error == "Verification failed"

    @pytest.mark.asyncio
    async def test_transaction_not_found(self, verifier, proof):
        with patch.object(verifier, "_get_client", return_value=rpc_client(None)):
            result = await verifier.verify(proof, PAYER)

        assert result.error == "Transaction not found"

    @pytest.mark.asyncio
    async def test_reverted_transaction(self, verifier, proof):
        client = rpc_client(receipt(transfer_log(5.0), status="0x0"))
        with patch.object(verifier, "_get_client", return_value=client):
            result = await verifier.verify(proof, PAYER)

        assert result.error == "Transaction failed"

    @pytest.mark.asyncio
    async def test_transfer_to_other_address_ignored(self, verifier, proof):
        client = rpc_client(receipt(transfer_log(5.0, to=PAYER)))
        with patch.object(verifier, "_get_client", return_value=client):
            result = await verifier.verify(proof, PAYER)

        assert result.error == "No transfer to treasury found"

    @pytest.mark.asyncio
    async def test_wrong_token_ignored(self, verifier, proof):
        other_token = "0x" + "99" * 20
        client = rpc_client(receipt(transfer_log(5.0, token=other_token)))
        with patch.object(verifier, "_get_client", return_value=client):
            result = await verifier.verify(proof, PAYER)

        assert result.error == "No transfer to treasury found"

    @pytest.mark.asyncio
    async def test_amount_mismatch(self, verifier, proof):
        client = rpc_client(receipt(transfer_log(4.0)))
        with patch.object(verifier, "_get_client", return_value=client):
            result = await verifier.verify(proof, PAYER)

        assert result.valid is False
        assert result.error == "Amount mismatch: expected 5.0, got 4.0"

    @pytest.mark.asyncio
    async def test_rpc_failure(self, verifier, proof, store):
        client = AsyncMock()
        client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch.object(verifier, "_get_client", return_value=client):
            result = await verifier.verify(proof, PAYER)

        assert result.error == "Verification failed"
        assert await store.is_transaction_used(TX_HASH) is False


class TestVerifyAccepts:
    """Test valid proofs"""

    @pytest.mark.asyncio
    async def test_valid_transfer(self, verifier, proof, store):
        client = rpc_client(receipt(transfer_log(5.0)))
        with patch.object(verifier, "_get_client", return_value=client):
            result = await verifier.verify(proof, PAYER)

        assert result.valid is True
        assert result.amount == 5.0
        assert await store.is_transaction_used(TX_HASH) is True

        request = client.post.call_args
        assert request.args[0] == "https://rpc.example"
        assert request.kwargs["json"]["method"] == "eth_getTransactionReceipt"
        assert request.kwargs["json"]["params"] == [TX_HASH]

    @pytest.mark.asyncio
    async def test_within_tolerance(self, verifier, proof):
        client = rpc_client(receipt(transfer_log(4.96)))
        with patch.object(verifier, "_get_client", return_value=client):
            result = await verifier.verify(proof, PAYER)

        assert result.valid is True
        assert result.amount == pytest.approx(4.96)

    @pytest.mark.asyncio
    async def test_sum_policy_adds_transfers(self, verifier, proof):
        client = rpc_client(receipt(transfer_log(2.0), transfer_log(3.0)))
        with patch.object(verifier, "_get_client", return_value=client):
            result = await verifier.verify(proof, PAYER)

        assert result.valid is True
        assert result.amount == 5.0

    @pytest.mark.asyncio
    async def test_first_policy_uses_first_transfer(self, store, networks, proof):
        verifier = PaymentVerifier(store, networks, TREASURY, match_policy="first")
        client = rpc_client(receipt(transfer_log(2.0), transfer_log(3.0)))
        with patch.object(verifier, "_get_client", return_value=client):
            result = await verifier.verify(proof, PAYER)

        assert result.valid is False
        assert result.amount == 2.0


class TestReplayProtection:
    """Test that a hash is credited at most once"""

    @pytest.mark.asyncio
    async def test_second_use_rejected(self, verifier, proof):
        client = rpc_client(receipt(transfer_log(5.0)))
        with patch.object(verifier, "_get_client", return_value=client):
            first = await verifier.verify(proof, PAYER)
            second = await verifier.verify(proof, PAYER)

        assert first.valid is True
        assert second.valid is False
        assert second.error == "Transaction already used"
        client.post.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hash_case_does_not_bypass_replay(self, verifier, proof):
        client = rpc_client(receipt(transfer_log(5.0)))
        upper = PaymentProof(tx_hash=TX_HASH.upper().replace("0X", "0x"), network="base", amount_usd=5.0)
        with patch.object(verifier, "_get_client", return_value=client):
            await verifier.verify(proof, PAYER)
            result = await verifier.verify(upper, PAYER)

        assert result.error == "Transaction already used"

    @pytest.mark.asyncio
    async def test_lost_insert_race_rejected(self, verifier, proof, store):
        """Another process recorded the hash between the check and the insert"""
        client = rpc_client(receipt(transfer_log(5.0)))
        store.mark_transaction_used = AsyncMock(return_value=False)
        with patch.object(verifier, "_get_client", return_value=client):
            result = await verifier.verify(proof, PAYER)

        assert result.valid is False
        assert result.error == "Transaction already used"

    @pytest.mark.asyncio
    async def test_previously_recorded_hash(self, verifier, proof, store):
        await store.mark_transaction_used(UsedTransaction(tx_hash=TX_HASH, wallet=PAYER, amount=5.0))

        result = await verifier.verify(proof, PAYER)

        assert result.error == "Transaction already used"

    @pytest.mark.asyncio
    async def test_same_hash_checked_one_at_a_time(self, verifier, proof, store):
        """A request arriving while a queued one holds the hash lock still waits"""
        envelope = rpc_client(receipt(transfer_log(5.0))).post.return_value
        calls = 0
        in_flight = 0
        max_in_flight = 0
        late = []

        async def post(*args, **kwargs):
            nonlocal calls, in_flight, max_in_flight
            calls += 1
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            if calls == 2:
                late.append(asyncio.ensure_future(verifier.verify(proof, PAYER)))
            for _ in range(5):
                await asyncio.sleep(0)
            in_flight -= 1
            return envelope

        client = AsyncMock()
        client.post = AsyncMock(side_effect=post)
        # Every caller reaches the RPC so overlapping checks would be visible
        store.is_transaction_used = AsyncMock(return_value=False)
        with patch.object(verifier, "_get_client", return_value=client):
            results = list(
                await asyncio.gather(verifier.verify(proof, PAYER), verifier.verify(proof, PAYER))
            )
            results.append(await late[0])

        assert calls == 3
        assert max_in_flight == 1
        assert [r.valid for r in results].count(True) == 1
        assert verifier._locks == {}
        assert verifier._lock_users == {}
