"""Data models for trustboot."""

from .config import AppConfig
from .credentials import Credentials, DistributionResponse, Responses, Server, StatusResponse
from .pki import Certificate, CertificateRequest, Key
from .token import Token

__all__ = [
    "AppConfig",
    "Certificate",
    "CertificateRequest",
    "Credentials",
    "DistributionResponse",
    "Key",
    "Responses",
    "Server",
    "StatusResponse",
    "Token",
]
