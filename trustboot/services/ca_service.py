"""Certificate Authority service."""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from trustboot.exceptions import CAInitializationError, SigningError, TrustBootError
from trustboot.models.config import CASettings
from trustboot.models.pki import Certificate, CertificateRequest, Key
from trustboot.services.serial_service import SerialCounter
from trustboot.utils.file_utils import FileUtils

logger = logging.getLogger("trustboot")

CA_KEY_FILE = "ca.key"
CA_CERT_FILE = "ca.crt"
SERIAL_FILE = "serial"

LEAF_VALIDITY = timedelta(days=365)


class CertificateAuthority:
    """Minimal CA owning a root key pair and a serial counter."""

    def __init__(self, root_dir: Path, key: Key, certificate: Certificate, serial: SerialCounter):
        """
        Initialize CA.

        Use :meth:`initialize` to set up or load a CA directory.

        Args:
            root_dir: CA root directory
            key: Root private key
            certificate: Self-signed root certificate
            serial: Serial number counter
        """
        self.root_dir = root_dir
        self.key = key
        self.certificate = certificate
        self.serial = serial

    @classmethod
    def initialize(cls, root_dir: Path, settings: Optional[CASettings] = None) -> "CertificateAuthority":
        """
        Set up the CA in ``root_dir``, or load it when already present.

        A missing key/certificate pair is generated together with a
        self-signed root certificate; the serial counter is created when
        absent and never reset.

        Args:
            root_dir: CA root directory
            settings: Root CA settings

        Returns:
            Ready-to-use CA

        Raises:
            CAInitializationError: On any I/O or signing failure
        """
        settings = settings or CASettings()
        key_path = root_dir / CA_KEY_FILE
        cert_path = root_dir / CA_CERT_FILE
        serial = SerialCounter(root_dir / SERIAL_FILE)

        try:
            FileUtils.ensure_directory(root_dir, mode=0o700)
            serial.initialize()

            if key_path.exists() and cert_path.exists():
                ca = cls(root_dir, Key.load(key_path), Certificate.load(cert_path), serial)
                logger.info(f"Loaded CA '{settings.common_name}' from {root_dir}")
                return ca

            key = Key.generate(settings.key_size)
            certificate = cls._self_sign(key, settings, serial.next())
            key.save(key_path)
            certificate.save(cert_path)
            logger.info(f"Created CA '{settings.common_name}' at {root_dir}")
            return cls(root_dir, key, certificate, serial)

        except (OSError, TrustBootError) as e:
            logger.error(f"Failed to initialize CA at {root_dir}: {e}")
            raise CAInitializationError(f"Failed to initialize CA at {root_dir}: {e}") from e

    @staticmethod
    def _self_sign(key: Key, settings: CASettings, serial_number: int) -> Certificate:
        attributes = [x509.NameAttribute(NameOID.COMMON_NAME, settings.common_name)]
        if settings.organization:
            attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, settings.organization))
        subject = x509.Name(attributes)
        now = datetime.now(timezone.utc)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(key.public_key)
            .serial_number(serial_number)
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=settings.validity_days))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key), critical=False)
        )
        try:
            return Certificate(builder.sign(private_key=key.private_key, algorithm=hashes.SHA256()))
        except (ValueError, TypeError) as e:
            raise SigningError(f"Failed to self-sign root certificate: {e}") from e

    def get_serial_number(self) -> int:
        """
        Allocate the serial number for the next certificate.

        Raises:
            SerialAllocationError: If the counter cannot be read or written
        """
        return self.serial.next()

    def certificate_pem(self) -> bytes:
        return self.certificate.to_pem()

    def sign_csr(self, csr: CertificateRequest) -> Certificate:
        """
        Sign a CSR into a client/server leaf certificate.

        The subject, public key and subject alternative names are copied from
        the request. Every leaf is valid for both client and server auth.

        Args:
            csr: Certificate signing request

        Returns:
            Signed certificate, valid for one year from now

        Raises:
            SigningError: If the CSR signature is invalid or signing fails
            SerialAllocationError: If no serial number can be allocated
        """
        if not csr.is_signature_valid:
            raise SigningError("CSR signature does not verify against its public key")

        serial_number = self.get_serial_number()
        not_before = datetime.now(timezone.utc)

        try:
            builder = (
                x509.CertificateBuilder()
                .subject_name(csr.subject)
                .issuer_name(self.certificate.subject)
                .public_key(csr.public_key)
                .serial_number(serial_number)
                .not_valid_before(not_before)
                .not_valid_after(not_before + LEAF_VALIDITY)
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=True,
                        data_encipherment=True,
                        key_agreement=True,
                        key_cert_sign=False,
                        crl_sign=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]),
                    critical=False,
                )
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(self.key.public_key),
                    critical=False,
                )
            )
            san = csr.subject_alternative_name
            if san is not None:
                builder = builder.add_extension(san, critical=False)

            certificate = Certificate(builder.sign(private_key=self.key.private_key, algorithm=hashes.SHA256()))
        except (ValueError, TypeError) as e:
            logger.error(f"Failed to sign CSR: {e}")
            raise SigningError(f"Failed to sign CSR: {e}") from e

        logger.info(f"Signed certificate serial={serial_number} subject={csr.subject.rfc4514_string()}")
        return certificate
