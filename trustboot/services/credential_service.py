"""Client credential acquisition and distribution."""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TypeVar

from trustboot.exceptions import SigningError, TransportError
from trustboot.models.config import DistributionSettings
from trustboot.models.credentials import Credentials, DistributionResponse
from trustboot.models.pki import Certificate, CertificateRequest, Key
from trustboot.services.token_service import TokenStore
from trustboot.services.transport import BootstrapClient
from trustboot.utils.file_utils import FileUtils

logger = logging.getLogger("trustboot")

CA_CERT_FILE = "ca.crt"
CLIENT_KEY_FILE = "client.key"
CLIENT_CSR_FILE = "client.csr"
CLIENT_CERT_FILE = "client.crt"
TOKENS_DIR = "tokens"

UNREACHABLE_STATUS = 503
PAYLOAD_ERROR_STATUS = 500

P = TypeVar("P")


def fan_out(
    targets: Sequence[str],
    build_payload: Callable[[int, str], P],
    send: Callable[[str, P], List[DistributionResponse]],
    max_workers: int = 16,
    on_build_error: Optional[Callable[[str, Exception], List[DistributionResponse]]] = None,
) -> List[DistributionResponse]:
    """
    Send one payload to each target concurrently.

    Args:
        targets: Target addresses
        build_payload: Called with ``(index, target)`` right before the send
        send: Delivers a payload and returns the target's responses
        max_workers: Upper bound on concurrent sends
        on_build_error: Turns a ``build_payload`` failure into the target's
            responses; without it the failure propagates

    Returns:
        All responses, grouped per target in input order regardless of
        completion order
    """
    if not targets:
        return []

    def deliver(item):
        index, target = item
        try:
            payload = build_payload(index, target)
        except Exception as e:
            if on_build_error is None:
                raise
            return on_build_error(target, e)
        return send(target, payload)

    with ThreadPoolExecutor(max_workers=min(len(targets), max_workers)) as executor:
        batches = list(executor.map(deliver, enumerate(targets)))
    return [response for batch in batches for response in batch]


class CredentialService:
    """Acquires this node's client certificate and pushes credentials to others."""

    def __init__(
        self,
        certs_dir: Path,
        client: BootstrapClient,
        token_store: Optional[TokenStore] = None,
        settings: Optional[DistributionSettings] = None,
    ):
        """
        Initialize credential service.

        Args:
            certs_dir: Directory for ca.crt, client.key, client.csr and client.crt
            client: Transport for outbound calls
            token_store: Store for minted tokens, defaults to ``certs_dir/tokens``
            settings: Distribution settings
        """
        self.certs_dir = certs_dir
        self.client = client
        self.settings = settings or DistributionSettings()
        self.token_store = token_store or TokenStore(certs_dir / TOKENS_DIR, self.settings.token_ttl_minutes)

    def acquire_client_credentials(self, credentials: Credentials) -> Certificate:
        """
        Obtain a signed client certificate from the bootstrap server.

        Every step whose artifact already exists on disk is skipped, so a
        retried call resumes where the previous one stopped.

        Args:
            credentials: Request naming the bootstrap server and carrying the
                one-time token

        Returns:
            The client certificate

        Raises:
            ValueError: If the request carries no auth token
            TransportError: If the bootstrap server cannot be reached
            SigningError: If the returned certificate does not match the key
        """
        cert_path = self.certs_dir / CLIENT_CERT_FILE
        if cert_path.exists():
            logger.info(f"Client certificate already present at {cert_path}")
            return Certificate.load(cert_path)

        if not credentials.auth_token:
            raise ValueError("AuthToken is required to acquire client credentials")

        bootstrap = credentials.bootstrap_address
        FileUtils.ensure_directory(self.certs_dir)

        ca_path = self.certs_dir / CA_CERT_FILE
        if not ca_path.exists():
            Certificate.from_pem(self.client.get_ca_certificate(bootstrap)).save(ca_path)
            logger.info(f"Stored CA certificate of {bootstrap}")

        key_path = self.certs_dir / CLIENT_KEY_FILE
        if not key_path.exists():
            Key.generate().save(key_path)
            logger.info(f"Generated client key at {key_path}")
        key = Key.load(key_path)

        csr_path = self.certs_dir / CLIENT_CSR_FILE
        csr = CertificateRequest.load(csr_path) if csr_path.exists() else None
        if csr is None or not csr.matches_key(key):
            if csr is not None:
                logger.warning(f"Client CSR at {csr_path} does not match the client key, recreating it")
            csr = CertificateRequest.create(key, public_ip=credentials.public_ip)
            csr.save(csr_path)
            logger.info(f"Created client CSR at {csr_path}")

        certificate = Certificate.from_pem(self.client.sign_csr(bootstrap, csr.to_pem(), credentials.auth_token))
        if not certificate.matches_key(key):
            raise SigningError("Signed certificate does not match the client key")
        certificate.save(cert_path)
        logger.info(f"Stored client certificate serial={certificate.serial_number}")
        return certificate

    def _build_payload(self, credentials: Credentials, index: int) -> Credentials:
        token = self.token_store.mint(self.settings.token_id_length, self.settings.token_secret_length)
        return Credentials(
            servers=credentials.servers,
            clients=credentials.clients,
            public_ip=credentials.public_ip if index == 0 else None,
            auth_token=token.random_hash,
        )

    @staticmethod
    def _payload_failure(target: str, error: Exception) -> List[DistributionResponse]:
        logger.error(f"Failed to prepare credentials for {target}: {error}")
        return [
            DistributionResponse(
                target=target,
                status_code=PAYLOAD_ERROR_STATUS,
                status=f"Failed to prepare credentials: {error}",
            )
        ]

    def _sender(self, user: str, password: str) -> Callable[[str, Credentials], List[DistributionResponse]]:
        def send(target: str, payload: Credentials) -> List[DistributionResponse]:
            try:
                return self.client.acquire_credentials(target, payload, user, password)
            except TransportError as e:
                return [DistributionResponse(target=target, status_code=UNREACHABLE_STATUS, status=str(e))]

        return send

    def distribute_client_credentials(
        self, credentials: Credentials, user: str, password: str
    ) -> List[DistributionResponse]:
        """
        Push client credential requests to every target.

        The first target (the bootstrap server) goes first and alone; any
        failure there aborts the fan-out. The remaining targets are then
        contacted concurrently. Each target receives its own freshly minted
        token; only the first receives the public IP.

        Args:
            credentials: Incoming bootstrap request
            user: Basic username forwarded to the targets
            password: Basic password forwarded to the targets

        Returns:
            Per-target responses in target order
        """
        targets = credentials.targets()
        logger.info(f"Distributing client credentials to {len(targets)} target(s)")
        send = self._sender(user, password)

        first = fan_out(
            targets[:1],
            lambda index, target: self._build_payload(credentials, 0),
            send,
            on_build_error=self._payload_failure,
        )
        if any(not response.ok for response in first):
            logger.warning(f"First hop {targets[0]} failed, skipping remaining targets")
            return first

        rest = fan_out(
            targets[1:],
            lambda index, target: self._build_payload(credentials, index + 1),
            send,
            max_workers=self.settings.max_workers,
            on_build_error=self._payload_failure,
        )
        failed = [r.target for r in rest if not r.ok]
        if failed:
            logger.warning(f"Distribution failed for: {', '.join(failed)}")
        return first + rest
