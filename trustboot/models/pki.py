"""Key, certificate signing request and certificate models."""

import ipaddress
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Sequence

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from trustboot.exceptions import KeyGenerationError, ParseError, SigningError
from trustboot.utils.file_utils import PRIVATE_FILE_MODE, PUBLIC_FILE_MODE, FileUtils

logger = logging.getLogger("trustboot")

DEFAULT_KEY_SIZE = 2048
DEFAULT_IDENTITY_CLAIMS = ("localhost", "127.0.0.1")

# Map cryptography attribute names to OpenSSL-style names
_KEY_USAGE_NAMES = {
    "digital_signature": "digitalSignature",
    "content_commitment": "nonRepudiation",
    "key_encipherment": "keyEncipherment",
    "data_encipherment": "dataEncipherment",
    "key_agreement": "keyAgreement",
    "key_cert_sign": "keyCertSign",
    "crl_sign": "cRLSign",
}

_EKU_NAMES = {
    ExtendedKeyUsageOID.SERVER_AUTH: "serverAuth",
    ExtendedKeyUsageOID.CLIENT_AUTH: "clientAuth",
    ExtendedKeyUsageOID.CODE_SIGNING: "codeSigning",
    ExtendedKeyUsageOID.EMAIL_PROTECTION: "emailProtection",
    ExtendedKeyUsageOID.TIME_STAMPING: "timeStamping",
    ExtendedKeyUsageOID.OCSP_SIGNING: "OCSPSigning",
}


def general_name(claim: str) -> x509.GeneralName:
    """
    Convert an identity claim to a SAN entry.

    Args:
        claim: Host name or IP address

    Returns:
        IPAddress entry for IP literals, DNSName otherwise
    """
    try:
        return x509.IPAddress(ipaddress.ip_address(claim))
    except ValueError:
        return x509.DNSName(claim)


def _same_public_key(public_key, key: "Key") -> bool:
    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    return public_key.public_bytes(serialization.Encoding.DER, fmt) == key.public_key.public_bytes(
        serialization.Encoding.DER, fmt
    )


def _san_values(extensions: x509.Extensions, kind) -> List[str]:
    try:
        san = extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return []
    return [str(value) for value in san.get_values_for_type(kind)]


class _PemObject:
    """DER-backed object with PEM round trip and file persistence."""

    PEM_TYPE = ""
    FILE_MODE = PUBLIC_FILE_MODE

    der_bytes: bytes

    @classmethod
    def _from_pem(cls, data: bytes) -> Any:
        raise NotImplementedError

    @classmethod
    def from_der(cls, data: bytes):
        raise NotImplementedError

    @classmethod
    def from_pem(cls, data):
        """
        Parse PEM content.

        Args:
            data: PEM text or bytes

        Raises:
            ParseError: If the PEM block is missing or its content is malformed
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        if b"-----BEGIN " not in data:
            raise ParseError(f"PEM decode failed: no {cls.PEM_TYPE} block found")
        try:
            return cls._from_pem(data)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise ParseError(f"Failed to parse {cls.PEM_TYPE}: {e}") from e

    @classmethod
    def load(cls, path: Path):
        """
        Load from a PEM file.

        Raises:
            OSError: If the file cannot be read
            ParseError: If the content is malformed
        """
        return cls.from_pem(FileUtils.read_binary_file(path))

    def to_pem(self) -> bytes:
        raise NotImplementedError

    def save(self, path: Path) -> None:
        """Write PEM encoding to ``path``."""
        FileUtils.write_binary_file(path, self.to_pem(), mode=self.FILE_MODE)
        logger.debug(f"Saved {self.PEM_TYPE} to {path}")

    def __eq__(self, other) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.der_bytes == other.der_bytes

    def __hash__(self) -> int:
        return hash(self.der_bytes)


class Key(_PemObject):
    """RSA key pair."""

    PEM_TYPE = "RSA PRIVATE KEY"
    FILE_MODE = PRIVATE_FILE_MODE

    def __init__(self, private_key: rsa.RSAPrivateKey):
        self.private_key = private_key
        self.der_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @classmethod
    def generate(cls, key_size: int = DEFAULT_KEY_SIZE) -> "Key":
        """
        Generate a fresh RSA key pair.

        Raises:
            KeyGenerationError: If the key cannot be generated
        """
        try:
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        except (ValueError, UnsupportedAlgorithm) as e:
            raise KeyGenerationError(f"Failed to generate RSA key: {e}") from e
        return cls(private_key)

    @classmethod
    def _wrap(cls, private_key) -> "Key":
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise ParseError("Private key is not an RSA key")
        return cls(private_key)

    @classmethod
    def from_der(cls, data: bytes) -> "Key":
        try:
            return cls._wrap(serialization.load_der_private_key(data, password=None))
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise ParseError(f"Failed to parse private key: {e}") from e

    @classmethod
    def _from_pem(cls, data: bytes) -> "Key":
        return cls._wrap(serialization.load_pem_private_key(data, password=None))

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self.private_key.public_key()

    def public_key_pem(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def to_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )


class CertificateRequest(_PemObject):
    """Certificate signing request bound to a key's public half."""

    PEM_TYPE = "CERTIFICATE REQUEST"

    def __init__(self, csr: x509.CertificateSigningRequest):
        self.csr = csr
        self.der_bytes = csr.public_bytes(serialization.Encoding.DER)

    @classmethod
    def create(
        cls,
        key: Key,
        public_ip: Optional[str] = None,
        claims: Sequence[str] = DEFAULT_IDENTITY_CLAIMS,
    ) -> "CertificateRequest":
        """
        Build and sign a CSR for ``key``.

        Args:
            key: Key whose public half the request binds
            public_ip: Public address of the node, appended to the claims
            claims: Host names and IP addresses the node claims

        Returns:
            Signed certificate request

        Raises:
            SigningError: If the request cannot be built or signed
        """
        names = list(claims)
        if public_ip:
            names.append(public_ip)
        # dict.fromkeys keeps claim order while dropping duplicates
        names = list(dict.fromkeys(names))
        try:
            subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, public_ip or "localhost")])
            builder = x509.CertificateSigningRequestBuilder().subject_name(subject)
            if names:
                builder = builder.add_extension(
                    x509.SubjectAlternativeName([general_name(n) for n in names]),
                    critical=False,
                )
            csr = builder.sign(key.private_key, hashes.SHA256())
        except (ValueError, TypeError) as e:
            raise SigningError(f"Failed to create certificate request: {e}") from e
        return cls(csr)

    @classmethod
    def from_der(cls, data: bytes) -> "CertificateRequest":
        try:
            return cls(x509.load_der_x509_csr(data))
        except ValueError as e:
            raise ParseError(f"Failed to parse certificate request: {e}") from e

    @classmethod
    def _from_pem(cls, data: bytes) -> "CertificateRequest":
        return cls(x509.load_pem_x509_csr(data))

    @property
    def subject(self) -> x509.Name:
        return self.csr.subject

    @property
    def public_key(self):
        return self.csr.public_key()

    @property
    def is_signature_valid(self) -> bool:
        return self.csr.is_signature_valid

    def matches_key(self, key: Key) -> bool:
        """Check that the request binds ``key``'s public half."""
        return _same_public_key(self.public_key, key)

    @property
    def subject_alternative_name(self) -> Optional[x509.SubjectAlternativeName]:
        try:
            return self.csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except x509.ExtensionNotFound:
            return None

    @property
    def dns_names(self) -> List[str]:
        return _san_values(self.csr.extensions, x509.DNSName)

    @property
    def ip_addresses(self) -> List[str]:
        return _san_values(self.csr.extensions, x509.IPAddress)

    def to_pem(self) -> bytes:
        return self.csr.public_bytes(serialization.Encoding.PEM)


class Certificate(_PemObject):
    """Signed X.509 certificate."""

    PEM_TYPE = "CERTIFICATE"

    def __init__(self, cert: x509.Certificate):
        self.cert = cert
        self.der_bytes = cert.public_bytes(serialization.Encoding.DER)

    @classmethod
    def from_der(cls, data: bytes) -> "Certificate":
        try:
            return cls(x509.load_der_x509_certificate(data))
        except ValueError as e:
            raise ParseError(f"Failed to parse certificate: {e}") from e

    @classmethod
    def _from_pem(cls, data: bytes) -> "Certificate":
        return cls(x509.load_pem_x509_certificate(data))

    @property
    def serial_number(self) -> int:
        return self.cert.serial_number

    @property
    def subject(self) -> x509.Name:
        return self.cert.subject

    @property
    def issuer(self) -> x509.Name:
        return self.cert.issuer

    @property
    def not_before(self) -> datetime:
        return self.cert.not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.cert.not_valid_after_utc

    @property
    def public_key(self):
        return self.cert.public_key()

    @property
    def subject_alternative_name(self) -> Optional[x509.SubjectAlternativeName]:
        try:
            return self.cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except x509.ExtensionNotFound:
            return None

    @property
    def dns_names(self) -> List[str]:
        return _san_values(self.cert.extensions, x509.DNSName)

    @property
    def ip_addresses(self) -> List[str]:
        return _san_values(self.cert.extensions, x509.IPAddress)

    @property
    def is_ca(self) -> bool:
        try:
            return self.cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
        except x509.ExtensionNotFound:
            return False

    @property
    def key_usage(self) -> List[str]:
        """Key Usage values as OpenSSL-style names."""
        try:
            ku = self.cert.extensions.get_extension_for_class(x509.KeyUsage).value
        except x509.ExtensionNotFound:
            return []
        return [name for attr, name in _KEY_USAGE_NAMES.items() if getattr(ku, attr)]

    @property
    def extended_key_usage(self) -> List[str]:
        try:
            eku = self.cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        except x509.ExtensionNotFound:
            return []
        return [_EKU_NAMES.get(oid, oid.dotted_string) for oid in eku]

    def matches_key(self, key: Key) -> bool:
        """Check that the certificate certifies ``key``'s public half."""
        return _same_public_key(self.public_key, key)

    def to_pem(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.PEM)
