"""
Spending limit enforcement.
Daily and monthly caps are checked against trailing 24h / 30-day spend from
the usage ledger, not calendar totals.
"""

import structlog

from ..core.exceptions import SpendingLimitExceededError
from ..core.pricing import round_money
from ..core.utils.address import normalize_address
from ..core.utils.date_utils import period_start, utcnow
from ..database.store import Store
from ..models.usage import SpendingLimits, SpendingStatus

logger = structlog.get_logger()

# Sentinel for "leave this limit unchanged"
UNCHANGED = object()


class SpendingLimitService:
    """Read, update and enforce per-wallet spending caps."""

    def __init__(self, store: Store):
        self.store = store

    async def get_status(self, wallet: str) -> SpendingStatus:
        """Limits plus trailing-window spend and remaining amounts."""
        wallet = normalize_address(wallet)
        now = utcnow()

        limits = await self.store.get_spending_limits(wallet)
        daily_spent = await self.store.get_spent_in_period(wallet, period_start("day", now))
        monthly_spent = await self.store.get_spent_in_period(
            wallet, period_start("month", now)
        )

        daily_limit = limits.daily_limit if limits else None
        monthly_limit = limits.monthly_limit if limits else None

        return SpendingStatus(
            wallet=wallet,
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
            daily_spent=round_money(daily_spent),
            monthly_spent=round_money(monthly_spent),
            daily_remaining=(
                round_money(max(0.0, daily_limit - daily_spent))
                if daily_limit is not None
                else None
            ),
            monthly_remaining=(
                round_money(max(0.0, monthly_limit - monthly_spent))
                if monthly_limit is not None
                else None
            ),
        )

    async def set_limits(
        self,
        wallet: str,
        daily_limit: float | None | object = UNCHANGED,
        monthly_limit: float | None | object = UNCHANGED,
    ) -> SpendingLimits:
        """
        Update a wallet's limits.

        Omitted arguments keep their current value; an explicit None clears the
        limit (unlimited).
        """
        wallet = normalize_address(wallet)
        current = await self.store.get_spending_limits(wallet) or SpendingLimits(
            wallet=wallet
        )

        limits = SpendingLimits(
            wallet=wallet,
            daily_limit=(
                current.daily_limit if daily_limit is UNCHANGED else daily_limit
            ),
            monthly_limit=(
                current.monthly_limit if monthly_limit is UNCHANGED else monthly_limit
            ),
            updated_at=utcnow(),
        )
        await self.store.set_spending_limits(limits)

        logger.info(
            "Spending limits updated",
            wallet=wallet,
            daily_limit=limits.daily_limit,
            monthly_limit=limits.monthly_limit,
        )
        return limits

    async def check(self, wallet: str, amount: float) -> SpendingStatus:
        """
        Verify that spending ``amount`` stays within both caps.

        Raises:
            SpendingLimitExceededError: Naming the limit, current spend and amount
        """
        status = await self.get_status(wallet)

        if status.daily_limit is not None and status.daily_spent + amount > status.daily_limit:
            logger.warning(
                "Daily spending limit exceeded",
                wallet=status.wallet,
                limit=status.daily_limit,
                spent=status.daily_spent,
                requested=amount,
            )
            raise SpendingLimitExceededError(
                "daily", status.daily_limit, status.daily_spent, amount, wallet=status.wallet
            )

        if (
            status.monthly_limit is not None
            and status.monthly_spent + amount > status.monthly_limit
        ):
            logger.warning(
                "Monthly spending limit exceeded",
                wallet=status.wallet,
                limit=status.monthly_limit,
                spent=status.monthly_spent,
                requested=amount,
            )
            raise SpendingLimitExceededError(
                "monthly",
                status.monthly_limit,
                status.monthly_spent,
                amount,
                wallet=status.wallet,
            )

        return status
