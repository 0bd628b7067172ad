"""Request authentication: Basic credentials plus RSA-PSS body signatures."""

import base64
import binascii
import logging
import secrets
from enum import Enum
from typing import Optional, Tuple

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from fastapi import Request

from trustboot.exceptions import AuthenticationError, SignatureError
from trustboot.models.config import SecuritySettings
from trustboot.models.credentials import SignedRequestBody
from trustboot.models.pki import Key

logger = logging.getLogger("trustboot")

SIGNATURE_HEADER = "signature"
PSS_SALT_LENGTH = 20


class SignatureMethod(str, Enum):
    """Whether a request body must carry a valid signature."""

    SIGNED = "signed"
    OPEN = "open"


def _pss() -> padding.PSS:
    return padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=PSS_SALT_LENGTH)


def get_auth_user_pass(authorization: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Extract the username/password pair from a Basic Authorization header.

    Args:
        authorization: Raw ``Authorization`` header value

    Returns:
        ``(username, password)``, or None if the header is missing, uses
        another scheme, is not valid base64 or lacks exactly one ``:``
    """
    parts = (authorization or "").split(" ", 1)
    if len(parts) != 2 or parts[0] != "Basic":
        logger.debug("Missing Basic authorization header")
        return None
    try:
        decoded = base64.b64decode(parts[1], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        logger.warning(f"Authorization header is not base64 encoded: {e}")
        return None
    pair = decoded.split(":")
    if len(pair) != 2:
        logger.warning("Authorization header is missing username/password")
        return None
    return pair[0], pair[1]


def check_signature(signature: str, public_key_pem: bytes, data: bytes) -> bool:
    """
    Verify an RSA-PSS (SHA-256, salt length 20) signature over ``data``.

    Pure function: malformed input of any kind yields False.

    Args:
        signature: Base64-encoded signature
        public_key_pem: PEM-encoded RSA public key
        data: Signed bytes

    Returns:
        True if the signature verifies
    """
    try:
        raw = base64.b64decode(signature, validate=True)
        public_key = serialization.load_pem_public_key(public_key_pem)
        if not isinstance(public_key, rsa.RSAPublicKey):
            logger.warning("Signature key is not an RSA public key")
            return False
        public_key.verify(raw, data, _pss(), hashes.SHA256())
        return True
    except (binascii.Error, ValueError, TypeError, UnsupportedAlgorithm, InvalidSignature) as e:
        logger.warning(f"Unable to check signature: {e!r}")
        return False


def sign_payload(key: Key, data: bytes) -> str:
    """Produce the base64 signature :func:`check_signature` accepts."""
    return base64.b64encode(key.private_key.sign(data, _pss(), hashes.SHA256())).decode("ascii")


class Authenticator:
    """Two-stage gate: Basic credentials, then (optionally) body signature."""

    def __init__(self, username: str, password: str, signature_key: bytes):
        """
        Initialize authenticator.

        Args:
            username: Expected Basic username
            password: Expected Basic password
            signature_key: PEM public key verifying body signatures

        Raises:
            ValueError: If any value is empty
        """
        if not username or not password or not signature_key:
            raise ValueError("Authenticator requires username, password and signature key")
        self.username = username
        self.password = password
        self.signature_key = signature_key

    @classmethod
    def from_settings(cls, settings: SecuritySettings) -> "Authenticator":
        return cls(settings.username, settings.password, settings.load_verify_key())

    def check_auth(self, authorization: Optional[str]) -> bool:
        pair = get_auth_user_pass(authorization)
        if pair is None:
            return False
        user, password = pair
        # Evaluate both comparisons to keep timing independent of which one fails
        user_ok = secrets.compare_digest(user.encode("utf-8"), self.username.encode("utf-8"))
        password_ok = secrets.compare_digest(password.encode("utf-8"), self.password.encode("utf-8"))
        return user_ok and password_ok

    @staticmethod
    async def read_body(request: Request) -> bytes:
        """
        Buffer the signed part of the request.

        For multipart bodies this is the first ``file`` part, rewound so the
        handler can read it again; otherwise the whole body, which Starlette
        caches for later reads.
        """
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("multipart"):
            form = await request.form()
            upload = form.get("file")
            if upload is None or isinstance(upload, str):
                return b""
            data = await upload.read()
            await upload.seek(0)
            return data
        return await request.body()

    async def authenticate(self, request: Request, method: SignatureMethod) -> None:
        """
        Run the gate against an inbound request.

        On success with ``SIGNED`` the signature and the verified bytes are
        stored on ``request.state.signed_request``.

        Raises:
            AuthenticationError: If Basic credentials are missing or wrong
            SignatureError: If ``method`` is SIGNED and the body signature fails
        """
        if not self.check_auth(request.headers.get("authorization")):
            client = request.client.host if request.client else "unknown"
            logger.warning(f"Invalid authorization header from {client}")
            raise AuthenticationError("401 Unauthorized")

        if method == SignatureMethod.SIGNED:
            body = await self.read_body(request)
            signature = request.headers.get(SIGNATURE_HEADER, "").strip()
            if not check_signature(signature, self.signature_key, body):
                raise SignatureError("406 Not Acceptable")
            request.state.signed_request = SignedRequestBody(signature=signature, signed_payload=body)
