"""
Balance ledger: per-wallet available/pending accounting.

Every mutation is a read-modify-write against the Store, serialized per wallet
with an asyncio.Lock so concurrent jobs for one wallet cannot lose updates.
"""

import asyncio
from collections import defaultdict

import structlog

from ..core.exceptions import InsufficientBalanceError, ValidationError
from ..core.pricing import round_money
from ..core.utils.address import normalize_address
from ..core.utils.date_utils import utcnow
from ..database.store import Store
from ..models.balance import WalletBalance

logger = structlog.get_logger()


class BalanceLedger:
    """Reserve, settle, refund and deposit operations on wallet balances."""

    def __init__(self, store: Store):
        """
        Initialize balance ledger.

        Args:
            store: Store holding wallet balances
        """
        self.store = store
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _load(self, wallet: str) -> WalletBalance:
        balance = await self.store.get_balance(wallet)
        return balance or WalletBalance(wallet=wallet)

    async def _save(self, balance: WalletBalance) -> WalletBalance:
        balance.available = round_money(balance.available)
        balance.pending = round_money(balance.pending)
        balance.total_deposited = round_money(balance.total_deposited)
        balance.total_spent = round_money(balance.total_spent)
        balance.updated_at = utcnow()
        await self.store.upsert_balance(balance)
        return balance

    async def get_balance(self, wallet: str) -> WalletBalance:
        """Current balance; wallets never seen before read as zero."""
        return await self._load(normalize_address(wallet))

    async def deposit(self, wallet: str, amount: float) -> WalletBalance:
        """Credit verified funds to available and total_deposited."""
        if amount <= 0:
            raise ValidationError("Deposit amount must be positive", amount=amount)

        wallet = normalize_address(wallet)
        async with self._locks[wallet]:
            balance = await self._load(wallet)
            balance.available += amount
            balance.total_deposited += amount
            balance = await self._save(balance)

        logger.info(
            "Credits deposited",
            wallet=wallet,
            amount=amount,
            available=balance.available,
        )
        return balance

    async def reserve(self, wallet: str, amount: float) -> WalletBalance:
        """
        Move funds from available to pending.

        Raises:
            InsufficientBalanceError: If available funds do not cover the amount
        """
        wallet = normalize_address(wallet)
        async with self._locks[wallet]:
            balance = await self._load(wallet)
            if balance.available < amount:
                raise InsufficientBalanceError(
                    required=amount, available=balance.available, wallet=wallet
                )
            balance.available -= amount
            balance.pending += amount
            balance = await self._save(balance)

        logger.info(
            "Funds reserved",
            wallet=wallet,
            amount=amount,
            available=balance.available,
            pending=balance.pending,
        )
        return balance

    async def settle(self, wallet: str, reserved: float, actual: float) -> WalletBalance:
        """
        Release a reservation, charging ``actual`` and refunding the rest.

        ``actual`` is capped at ``reserved`` so the refund is never negative.
        """
        charge = min(actual, reserved)
        refund = reserved - charge

        wallet = normalize_address(wallet)
        async with self._locks[wallet]:
            balance = await self._load(wallet)
            self._release_pending(balance, reserved)
            balance.available += refund
            balance.total_spent += charge
            balance = await self._save(balance)

        logger.info(
            "Reservation settled",
            wallet=wallet,
            reserved=reserved,
            charged=charge,
            refunded=round_money(refund),
            available=balance.available,
        )
        return balance

    async def refund(self, wallet: str, amount: float) -> WalletBalance:
        """Return a whole reservation to available."""
        wallet = normalize_address(wallet)
        async with self._locks[wallet]:
            balance = await self._load(wallet)
            self._release_pending(balance, amount)
            balance.available += amount
            balance = await self._save(balance)

        logger.info(
            "Reservation refunded",
            wallet=wallet,
            amount=amount,
            available=balance.available,
            pending=balance.pending,
        )
        return balance

    @staticmethod
    def _release_pending(balance: WalletBalance, amount: float) -> None:
        remaining = round_money(balance.pending - amount)
        if remaining < 0:
            # Pending never goes negative; a shortfall means a double release
            logger.error(
                "Pending balance underflow",
                wallet=balance.wallet,
                pending=balance.pending,
                release=amount,
            )
            remaining = 0.0
        balance.pending = remaining
