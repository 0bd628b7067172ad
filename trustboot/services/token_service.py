"""One-time token store."""

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from trustboot.exceptions import AuthenticationError
from trustboot.models.token import Token
from trustboot.services.yaml_service import YAMLService
from trustboot.utils.file_utils import PRIVATE_FILE_MODE, FileUtils

logger = logging.getLogger("trustboot")

_TOKEN_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


class TokenStore:
    """Persists tokens under ``tokens/<hash>`` and consumes each at most once."""

    def __init__(self, tokens_dir: Path, ttl_minutes: Optional[int] = None):
        """
        Initialize token store.

        Args:
            tokens_dir: Directory holding one file per token
            ttl_minutes: Token lifetime; None disables expiry
        """
        self.tokens_dir = tokens_dir
        self.ttl = timedelta(minutes=ttl_minutes) if ttl_minutes is not None else None

    def _path(self, random_hash: str) -> Path:
        if not _TOKEN_HASH_RE.match(random_hash or ""):
            raise AuthenticationError("Malformed token")
        return self.tokens_dir / random_hash

    def store(self, token: Token) -> Path:
        """
        Persist a token with owner-only permissions.

        Raises:
            FileExistsError: If a token with the same hash is already stored
        """
        FileUtils.ensure_directory(self.tokens_dir, mode=0o700)
        path = self._path(token.random_hash)
        FileUtils.write_exclusive(path, YAMLService.dumps(token.model_dump(mode="json", by_alias=True)), PRIVATE_FILE_MODE)
        return path

    def mint(self, id_length: int, secret_length: int) -> Token:
        """Create and persist a fresh token."""
        token = Token.new(id_length, secret_length)
        self.store(token)
        logger.debug(f"Minted token {token.random_hash[:8]}...")
        return token

    def consume(self, random_hash: str) -> Token:
        """
        Redeem a token, deleting it so it cannot be used again.

        Args:
            random_hash: Token identifier presented by the caller

        Returns:
            The redeemed token

        Raises:
            AuthenticationError: If the token is malformed, unknown, already
                used or expired
        """
        path = self._path(random_hash)
        try:
            content = FileUtils.read_binary_file(path)
            # Of two concurrent consumers only one wins the unlink
            path.unlink()
        except FileNotFoundError:
            logger.warning(f"Rejected unknown token {random_hash[:8]}...")
            raise AuthenticationError("Unknown or already used token")

        try:
            token = Token.model_validate(YAMLService.loads(content))
        except (ValueError, ValidationError) as e:
            raise AuthenticationError(f"Corrupt token record: {e}") from e

        if self.ttl is not None and datetime.now(timezone.utc) - token.created_at > self.ttl:
            logger.warning(f"Rejected expired token {random_hash[:8]}...")
            raise AuthenticationError("Token expired")

        logger.info(f"Consumed token {random_hash[:8]}...")
        return token
