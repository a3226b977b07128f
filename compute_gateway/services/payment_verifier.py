"""
On-chain payment verification with replay protection.

Checks a client-supplied {tx_hash, network, amount_usd} proof against the
network's JSON-RPC endpoint: the receipt must have succeeded and contain an
ERC20 Transfer from the configured stablecoin contract to the treasury.

A hash is credited at most once. Within a process a per-hash asyncio.Lock
serializes verifications; across processes the Store's mark_transaction_used
(a unique index in MongoDB) decides the single winner.
"""

import asyncio
from collections import defaultdict
from typing import Any, Literal

import httpx
import structlog

from ..core.config import PaymentNetwork
from ..core.utils.address import normalize_address
from ..database.store import Store
from ..models.balance import PaymentVerification, UsedTransaction
from ..models.job import PaymentProof

logger = structlog.get_logger()

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = (
    "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
)
RECEIPT_SUCCESS = "0x1"


def _invalid(error: str, amount: float = 0.0) -> PaymentVerification:
    return PaymentVerification(valid=False, amount=amount, error=error)


def topic_to_address(topic: str) -> str:
    """Recover a 20-byte address from a 32-byte indexed topic."""
    return "0x" + topic[-40:].lower()


class PaymentVerifier:
    """
    Stablecoin payment verifier.

    Args:
        store: Store holding used transaction hashes
        networks: Accepted networks mapped to RPC endpoint and token contract
        treasury_wallet: Address payments must be sent to
        tolerance: Allowed relative difference between claimed and paid amount
        match_policy: "sum" adds every matching Transfer log; "first" uses
            only the first one
        timeout: RPC request timeout in seconds
        client: Optional httpx AsyncClient for connection pooling
    """

    def __init__(
        self,
        store: Store,
        networks: dict[str, PaymentNetwork],
        treasury_wallet: str,
        tolerance: float = 0.01,
        match_policy: Literal["sum", "first"] = "sum",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.store = store
        self.networks = networks
        self.treasury_wallet = normalize_address(treasury_wallet)
        self.tolerance = tolerance
        self.match_policy = match_policy
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: defaultdict[str, int] = defaultdict(int)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_transaction_receipt(
        self, network: PaymentNetwork, tx_hash: str
    ) -> dict[str, Any] | None:
        """
        Fetch a receipt via eth_getTransactionReceipt.

        Returns:
            Receipt dict, or None if the node does not know the transaction

        Raises:
            httpx.HTTPError: On transport or HTTP status failures
        """
        client = await self._get_client()
        response = await client.post(
            network.rpc_url,
            json={
                "jsonrpc": "2.0",
                "method": "eth_getTransactionReceipt",
                "params": [tx_hash],
                "id": 1,
            },
        )
        response.raise_for_status()
        data = response.json()

        if data.get("error"):
            logger.warning(
                "RPC returned error for receipt",
                tx_hash=tx_hash,
                rpc_error=data["error"],
            )
        return data.get("result")

    def transferred_amount(self, receipt: dict[str, Any], network: PaymentNetwork) -> float:
        """Sum (or first) of token Transfer amounts to the treasury in a receipt."""
        token_address = network.token_address.lower()
        total_raw = 0

        for log in receipt.get("logs") or []:
            if (log.get("address") or "").lower() != token_address:
                continue
            topics = log.get("topics") or []
            if len(topics) < 3 or topics[0].lower() != TRANSFER_EVENT_TOPIC:
                continue
            if topic_to_address(topics[2]) != self.treasury_wallet:
                continue

            total_raw += int(log.get("data") or "0x0", 16)
            if self.match_policy == "first":
                break

        return total_raw / 10**network.token_decimals

    async def verify(self, proof: PaymentProof, wallet: str) -> PaymentVerification:
        """
        Verify a payment proof and, if valid, record its hash as used.

        Never raises for a bad proof; the reason is returned in ``error``.

        Args:
            proof: Client-supplied payment proof
            wallet: Wallet that will be credited

        Returns:
            PaymentVerification with the on-chain amount when valid
        """
        if not proof.tx_hash or not proof.network:
            return _invalid("Missing txHash or network")

        network = self.networks.get(proof.network)
        if network is None:
            return _invalid(f"Unsupported network: {proof.network}")

        if not self.treasury_wallet:
            logger.error("Payment verification attempted without treasury wallet")
            return _invalid("Verification failed")

        tx_hash = normalize_address(proof.tx_hash)
        wallet = normalize_address(wallet)

        lock = self._locks[tx_hash]
        self._lock_users[tx_hash] += 1
        try:
            async with lock:
                return await self._verify_locked(proof, network, tx_hash, wallet)
        finally:
            # Drop the lock only once nobody holds or waits on it
            self._lock_users[tx_hash] -= 1
            if not self._lock_users[tx_hash]:
                del self._lock_users[tx_hash]
                self._locks.pop(tx_hash, None)

    async def _verify_locked(
        self,
        proof: PaymentProof,
        network: PaymentNetwork,
        tx_hash: str,
        wallet: str,
    ) -> PaymentVerification:
        if await self.store.is_transaction_used(tx_hash):
            logger.warning("Payment replay rejected", tx_hash=tx_hash, wallet=wallet)
            return _invalid("Transaction already used")

        try:
            receipt = await self.get_transaction_receipt(network, tx_hash)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "Payment verification failed",
                tx_hash=tx_hash,
                network=proof.network,
                error=str(e),
                error_type=type(e).__name__,
            )
            return _invalid("Verification failed")

        if not receipt:
            return _invalid("Transaction not found")

        if receipt.get("status") != RECEIPT_SUCCESS:
            return _invalid("Transaction failed")

        try:
            amount = self.transferred_amount(receipt, network)
        except (TypeError, ValueError) as e:
            logger.error("Malformed transfer log", tx_hash=tx_hash, error=str(e))
            return _invalid("Verification failed")

        if amount == 0:
            return _invalid("No transfer to treasury found")

        if abs(amount - proof.amount_usd) / proof.amount_usd > self.tolerance:
            return _invalid(
                f"Amount mismatch: expected {proof.amount_usd}, got {amount}",
                amount=amount,
            )

        recorded = await self.store.mark_transaction_used(
            UsedTransaction(
                tx_hash=tx_hash,
                wallet=wallet,
                amount=amount,
                network=proof.network,
            )
        )
        if not recorded:
            # Lost the race to another process
            return _invalid("Transaction already used")

        logger.info(
            "Payment verified",
            tx_hash=tx_hash,
            wallet=wallet,
            network=proof.network,
            amount=amount,
        )
        return PaymentVerification(valid=True, amount=amount)
