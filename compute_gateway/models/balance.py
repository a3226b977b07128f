"""
Wallet balance and payment ledger models.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from ..core.utils.date_utils import utcnow


class WalletBalance(BaseModel):
    """
    Per-wallet funds.

    Reservations move funds available → pending; settlement moves pending to
    spent (and any refund back to available).
    """

    wallet: str
    available: float = Field(default=0.0, ge=0)
    pending: float = Field(default=0.0, ge=0)
    total_deposited: float = Field(default=0.0, ge=0)
    total_spent: float = Field(default=0.0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)


class UsedTransaction(BaseModel):
    """A payment transaction that has already been credited."""

    tx_hash: str
    wallet: str
    amount: float
    network: str | None = None
    used_at: datetime = Field(default_factory=utcnow)


class PaymentVerification(BaseModel):
    """Outcome of verifying a payment proof."""

    valid: bool
    amount: float = 0.0
    error: str | None = None


class DepositResult(BaseModel):
    """Outcome of a standalone deposit."""

    success: bool
    credits: float = 0.0
    tx_hash: str | None = None
    error: str | None = None
