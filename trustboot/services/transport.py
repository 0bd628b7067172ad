"""Outbound HTTP client for talking to other trustboot nodes."""

import logging
from typing import List, Optional

import httpx

from trustboot.exceptions import TransportError
from trustboot.models.config import DistributionSettings
from trustboot.models.credentials import Credentials, DistributionResponse, Responses
from trustboot.models.pki import Key
from trustboot.services.auth_service import SIGNATURE_HEADER, sign_payload

logger = logging.getLogger("trustboot")

CA_PATH = "/trustboot/ca"
CSR_PATH = "/trustboot/csr/client"
CLIENT_CREDS_PATH = "/trustboot/client/credentials"
CLIENT_CREDS_DISTRIBUTE_PATH = "/trustboot/client/credentials/distribute"


def _status_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(data, dict):
        return str(data.get("Status") or data.get("detail") or data)
    return str(data)


class BootstrapClient:
    """httpx-based transport with an explicit timeout on every call."""

    def __init__(
        self,
        settings: Optional[DistributionSettings] = None,
        signing_key: Optional[Key] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            settings: Scheme, port and timeout for outbound calls
            signing_key: Key used to sign forwarded credential requests
            transport: Custom httpx transport (tests)
        """
        self.settings = settings or DistributionSettings()
        self.signing_key = signing_key
        self._client = httpx.Client(timeout=self.settings.timeout_seconds, transport=transport)

    def close(self) -> None:
        self._client.close()

    def base_url(self, address: str) -> str:
        return f"{self.settings.scheme}://{address}:{self.settings.port}"

    def _request(self, method: str, address: str, path: str, **kwargs) -> httpx.Response:
        url = self.base_url(address) + path
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"{method} {url} timed out: {e}")
            raise TransportError(f"Request to {address} timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"{method} {url} failed: {e}")
            raise TransportError(f"Request to {address} failed: {e}") from e

    def _expect_ok(self, response: httpx.Response, address: str) -> bytes:
        if response.status_code != 200:
            raise TransportError(f"{address} answered {response.status_code}: {_status_message(response)}")
        return response.content

    def _signed_headers(self, content: bytes) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.signing_key is not None:
            headers[SIGNATURE_HEADER] = sign_payload(self.signing_key, content)
        return headers

    def get_ca_certificate(self, address: str) -> bytes:
        """Fetch the CA certificate PEM of ``address``."""
        return self._expect_ok(self._request("GET", address, CA_PATH), address)

    def sign_csr(self, address: str, csr_pem: bytes, token: str) -> bytes:
        """
        Have ``address`` sign a CSR, authorizing with a one-time token.

        Returns:
            Signed certificate PEM
        """
        response = self._request(
            "POST",
            address,
            CSR_PATH,
            content=csr_pem,
            headers={"Authorization": f"Token {token}", "Content-Type": "application/x-pem-file"},
        )
        return self._expect_ok(response, address)

    def acquire_credentials(
        self, address: str, payload: Credentials, user: str, password: str
    ) -> List[DistributionResponse]:
        """
        Ask ``address`` to acquire its client credentials.

        Non-success answers are reported in the returned response rather than
        raised.
        """
        content = payload.to_json_bytes()
        response = self._request(
            "POST",
            address,
            CLIENT_CREDS_PATH,
            content=content,
            headers=self._signed_headers(content),
            auth=(user, password),
        )
        return [
            DistributionResponse(
                target=address,
                status_code=response.status_code,
                status=_status_message(response),
            )
        ]

    def distribute_credentials(self, address: str, payload: Credentials, user: str, password: str) -> Responses:
        """Ask ``address`` to distribute credentials to the targets in ``payload``."""
        content = payload.to_json_bytes()
        response = self._request(
            "POST",
            address,
            CLIENT_CREDS_DISTRIBUTE_PATH,
            content=content,
            headers=self._signed_headers(content),
            auth=(user, password),
        )
        self._expect_ok(response, address)
        try:
            return Responses.model_validate(response.json())
        except ValueError as e:
            raise TransportError(f"Invalid distribution answer from {address}: {e}") from e
