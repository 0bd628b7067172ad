"""Service layer for business logic."""

from .auth_service import Authenticator, SignatureMethod
from .ca_service import CertificateAuthority
from .credential_service import CredentialService
from .serial_service import SerialCounter
from .token_service import TokenStore
from .transport import BootstrapClient
from .yaml_service import YAMLService

__all__ = [
    "Authenticator",
    "BootstrapClient",
    "CertificateAuthority",
    "CredentialService",
    "SerialCounter",
    "SignatureMethod",
    "TokenStore",
    "YAMLService",
]
