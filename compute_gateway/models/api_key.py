"""
API key models.
A key is never deleted; revocation is permanent and the row is kept for audit.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from ..core.utils.date_utils import utcnow


class ApiKey(BaseModel):
    """API key record for database storage."""

    api_key: str = Field(..., description="Opaque bearer token")
    wallet: str = Field(..., description="Owning wallet (lower-case)")
    name: str = Field(default="default", max_length=100)
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime | None = None
    revoked_at: datetime | None = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None


class ApiKeyInfo(BaseModel):
    """Masked view returned by listings."""

    api_key: str = Field(..., description="Masked key (prefix...suffix)")
    name: str
    created_at: datetime
    last_used_at: datetime | None = None
    revoked: bool = False


class ApiKeyCreate(BaseModel):
    """Request body for issuing a key to the calling wallet."""

    name: str = Field(default="default", max_length=100)
