"""One-time token model."""

import hashlib
import secrets
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Token(BaseModel):
    """A single-use credential authorizing one distribution hop."""

    model_config = ConfigDict(populate_by_name=True)

    random_hash: str = Field(..., alias="RandomHash", pattern=r"^[0-9a-f]{64}$")
    created_at: datetime = Field(default_factory=_utcnow, alias="CreatedAt")

    @classmethod
    def new(cls, id_length: int, secret_length: int) -> "Token":
        """
        Create a fresh random token.

        Args:
            id_length: Number of random bytes in the identifier
            secret_length: Number of random bytes in the secret

        Returns:
            Token whose hash digests both random parts
        """
        token_id = secrets.token_hex(id_length)
        secret = secrets.token_hex(secret_length)
        digest = hashlib.sha256(f"{token_id}:{secret}".encode("utf-8")).hexdigest()
        return cls(random_hash=digest)
