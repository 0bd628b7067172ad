"""Error taxonomy for trustboot.

File persistence failures are reported with Python's built-in ``OSError``.
"""

from typing import List


class TrustBootError(Exception):
    """Base class for all trustboot errors."""


class KeyGenerationError(TrustBootError):
    """Raised when a new key pair cannot be generated."""


class ParseError(TrustBootError, ValueError):
    """Raised when PEM or DER content for a key, CSR or certificate is malformed."""


class SigningError(TrustBootError):
    """Raised when a CSR or certificate cannot be built or signed."""


class CAInitializationError(TrustBootError):
    """Raised when the CA root directory cannot be set up or loaded."""


class SerialAllocationError(TrustBootError):
    """Raised when the serial counter cannot be read or written."""


class AuthenticationError(TrustBootError):
    """Raised on missing or invalid Basic credentials or tokens."""


class SignatureError(TrustBootError):
    """Raised when a request body signature is malformed or does not verify."""


class TransportError(TrustBootError):
    """Raised when an outbound HTTP call fails or times out."""


class ConfigurationError(TrustBootError):
    """Raised when configured settings cannot be turned into a working service."""


class PartialDistributionError(TrustBootError):
    """Raised when one or more distribution targets reported non-success."""

    def __init__(self, responses: List):
        self.responses = responses
        failed = [r.target for r in responses if not r.ok]
        super().__init__(f"Distribution failed for: {', '.join(failed)}")
