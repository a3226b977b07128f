"""
API key management: issuance, lookup, listing and revocation.
"""

import secrets

import structlog

from ..core.exceptions import ValidationError
from ..core.utils.address import mask_secret, normalize_address
from ..core.utils.date_utils import utcnow
from ..database.store import Store
from ..models.api_key import ApiKey, ApiKeyInfo

logger = structlog.get_logger()

API_KEY_PREFIX = "clodds_"
API_KEY_BYTES = 24


def generate_api_key() -> str:
    """Opaque bearer token: prefix plus 48 hex characters."""
    return API_KEY_PREFIX + secrets.token_hex(API_KEY_BYTES)


class ApiKeyService:
    """Bearer credentials mapped to wallets."""

    def __init__(self, store: Store):
        self.store = store

    async def create_api_key(self, wallet: str, name: str = "default") -> ApiKey:
        """Issue a new key for a wallet. The full key is only returned here."""
        wallet = normalize_address(wallet)
        if not wallet:
            raise ValidationError("Wallet is required")

        api_key = ApiKey(api_key=generate_api_key(), wallet=wallet, name=name)
        await self.store.create_api_key(api_key)

        logger.info(
            "API key created",
            wallet=wallet,
            name=name,
            api_key=mask_secret(api_key.api_key),
        )
        return api_key

    async def get_api_key_wallet(self, api_key: str) -> str | None:
        """
        Resolve a key to its wallet.

        Returns None for unknown or revoked keys. A successful lookup stamps
        last_used_at.
        """
        record = await self.store.get_api_key(api_key)
        if record is None or record.is_revoked:
            return None

        await self.store.touch_api_key(api_key, utcnow())
        return record.wallet

    async def list_api_keys(self, wallet: str) -> list[ApiKeyInfo]:
        """Masked keys for a wallet, newest first."""
        keys = await self.store.get_api_keys_by_wallet(normalize_address(wallet))
        return [
            ApiKeyInfo(
                api_key=mask_secret(k.api_key),
                name=k.name,
                created_at=k.created_at,
                last_used_at=k.last_used_at,
                revoked=k.is_revoked,
            )
            for k in keys
        ]

    async def revoke_api_key(self, wallet: str, api_key: str) -> bool:
        """
        Permanently revoke a key owned by the wallet.

        Returns:
            False if the key is unknown, owned by another wallet, or already revoked
        """
        wallet = normalize_address(wallet)
        revoked = await self.store.revoke_api_key(wallet, api_key, utcnow())

        if revoked:
            logger.info("API key revoked", wallet=wallet, api_key=mask_secret(api_key))
        else:
            logger.warning(
                "API key revocation rejected",
                wallet=wallet,
                api_key=mask_secret(api_key),
            )
        return revoked
