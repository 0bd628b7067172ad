"""Tests for client credential acquisition and distribution."""

import stat
import threading
import time

import pytest

from trustboot.exceptions import SigningError, TransportError
from trustboot.models.credentials import Credentials, DistributionResponse, Server
from trustboot.models.pki import Certificate, CertificateRequest
from trustboot.services.credential_service import (
    CA_CERT_FILE,
    CLIENT_CERT_FILE,
    CLIENT_CSR_FILE,
    CLIENT_KEY_FILE,
    CredentialService,
    fan_out,
)
from trustboot.services.token_service import TokenStore


class FakeBootstrapClient:
    """Records outbound calls and answers from a local CA."""

    def __init__(self, ca=None, failing=(), unreachable=(), wrong_key=None):
        self.ca = ca
        self.failing = set(failing)
        self.unreachable = set(unreachable)
        self.wrong_key = wrong_key
        self.calls = []
        self.csr_calls = 0
        self._lock = threading.Lock()

    def get_ca_certificate(self, address):
        return self.ca.certificate_pem()

    def sign_csr(self, address, csr_pem, token):
        self.csr_calls += 1
        csr = CertificateRequest.from_pem(csr_pem)
        if self.wrong_key is not None:
            csr = CertificateRequest.create(self.wrong_key)
        return self.ca.sign_csr(csr).to_pem()

    def acquire_credentials(self, address, payload, user, password):
        with self._lock:
            self.calls.append((address, payload, user, password))
        if address in self.unreachable:
            raise TransportError(f"Request to {address} failed")
        if address in self.failing:
            return [DistributionResponse(target=address, status_code=500, status="boom")]
        return [DistributionResponse(target=address, status_code=200, status="OK")]


class FailingTokenStore(TokenStore):
    """Token store whose disk fills up after a number of mints."""

    def __init__(self, tokens_dir, successful_mints):
        super().__init__(tokens_dir, ttl_minutes=60)
        self.remaining = successful_mints
        self._lock = threading.Lock()

    def mint(self, id_length, secret_length):
        with self._lock:
            if self.remaining <= 0:
                raise OSError(28, "No space left on device")
            self.remaining -= 1
        return super().mint(id_length, secret_length)


def _credentials(clients=(), public_ip=None, auth_token=None):
    return Credentials(
        servers=[Server(address="10.0.0.1")],
        clients=list(clients),
        public_ip=public_ip,
        auth_token=auth_token,
    )


@pytest.mark.unit
class TestFanOut:
    """Test concurrent delivery."""

    def test_preserves_target_order(self):
        """Test that responses follow target order, not completion order."""
        targets = ["a", "b", "c", "d"]
        delays = {"a": 0.2, "b": 0.0, "c": 0.1, "d": 0.05}

        def send(target, payload):
            time.sleep(delays[target])
            return [DistributionResponse(target=target, status_code=200, status=payload)]

        responses = fan_out(targets, lambda index, target: f"payload-{index}", send)

        assert [r.target for r in responses] == targets
        assert [r.status for r in responses] == ["payload-0", "payload-1", "payload-2", "payload-3"]

    def test_runs_concurrently(self):
        barrier = threading.Barrier(3, timeout=5)

        def send(target, payload):
            barrier.wait()
            return [DistributionResponse(target=target, status_code=200)]

        assert len(fan_out(["a", "b", "c"], lambda index, target: None, send)) == 3

    def test_no_targets(self):
        assert fan_out([], lambda index, target: None, lambda target, payload: []) == []

    def test_build_failure_reported(self):
        """Test that a payload failure becomes that target's response while others are sent."""

        def build(index, target):
            if target == "b":
                raise OSError("disk full")
            return target

        def send(target, payload):
            return [DistributionResponse(target=target, status_code=200, status=payload)]

        def on_error(target, error):
            return [DistributionResponse(target=target, status_code=500, status=str(error))]

        responses = fan_out(["a", "b", "c"], build, send, on_build_error=on_error)

        assert [(r.target, r.status_code) for r in responses] == [("a", 200), ("b", 500), ("c", 200)]

    def test_build_failure_propagates_without_handler(self):
        def build(index, target):
            raise OSError("disk full")

        with pytest.raises(OSError):
            fan_out(["a"], build, lambda target, payload: [])

    def test_flattens_multiple_responses(self):
        def send(target, payload):
            return [DistributionResponse(target=target, status_code=200)] * 2

        assert len(fan_out(["a", "b"], lambda index, target: None, send)) == 4


@pytest.mark.unit
class TestDistribution:
    """Test pushing credential requests to a cluster."""

    def test_all_targets_contacted(self, work_dir, token_store):
        client = FakeBootstrapClient()
        service = CredentialService(work_dir / "certs", client, token_store)

        responses = service.distribute_client_credentials(
            _credentials(["10.0.0.2", "10.0.0.3"], public_ip="203.0.113.1"), "admin", "secret"
        )

        assert [r.target for r in responses] == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
        assert all(r.ok for r in responses)
        assert client.calls[0][0] == "10.0.0.1"
        assert {call[2:] for call in client.calls} == {("admin", "secret")}

    def test_public_ip_only_for_first_target(self, work_dir, token_store):
        client = FakeBootstrapClient()
        service = CredentialService(work_dir / "certs", client, token_store)

        service.distribute_client_credentials(
            _credentials(["10.0.0.2", "10.0.0.3"], public_ip="203.0.113.1"), "admin", "secret"
        )

        payloads = {address: payload for address, payload, _, _ in client.calls}
        assert payloads["10.0.0.1"].public_ip == "203.0.113.1"
        assert payloads["10.0.0.2"].public_ip is None
        assert payloads["10.0.0.3"].public_ip is None

    def test_each_target_gets_its_own_token(self, work_dir, token_store):
        client = FakeBootstrapClient()
        service = CredentialService(work_dir / "certs", client, token_store)

        service.distribute_client_credentials(_credentials(["10.0.0.2", "10.0.0.3"]), "admin", "secret")

        tokens = [payload.auth_token for _, payload, _, _ in client.calls]
        assert len(set(tokens)) == 3
        for token in tokens:
            assert token_store.consume(token).random_hash == token

    def test_first_hop_failure_stops_fan_out(self, work_dir, token_store):
        client = FakeBootstrapClient(failing=["10.0.0.1"])
        service = CredentialService(work_dir / "certs", client, token_store)

        responses = service.distribute_client_credentials(_credentials(["10.0.0.2", "10.0.0.3"]), "admin", "secret")

        assert len(responses) == 1
        assert responses[0].status_code == 500
        assert [call[0] for call in client.calls] == ["10.0.0.1"]

    def test_unreachable_client_reported(self, work_dir, token_store):
        client = FakeBootstrapClient(unreachable=["10.0.0.2"])
        service = CredentialService(work_dir / "certs", client, token_store)

        responses = service.distribute_client_credentials(_credentials(["10.0.0.2", "10.0.0.3"]), "admin", "secret")

        assert [(r.target, r.status_code) for r in responses] == [
            ("10.0.0.1", 200),
            ("10.0.0.2", 503),
            ("10.0.0.3", 200),
        ]

    def test_unreachable_first_hop(self, work_dir, token_store):
        client = FakeBootstrapClient(unreachable=["10.0.0.1"])
        service = CredentialService(work_dir / "certs", client, token_store)

        responses = service.distribute_client_credentials(_credentials(["10.0.0.2"]), "admin", "secret")

        assert [(r.target, r.status_code) for r in responses] == [("10.0.0.1", 503)]

    def test_token_failure_reported_per_target(self, work_dir):
        """Test that a token that cannot be stored fails only its own target."""
        client = FakeBootstrapClient()
        service = CredentialService(work_dir / "certs", client, FailingTokenStore(work_dir / "tokens", 1))

        responses = service.distribute_client_credentials(_credentials(["10.0.0.2", "10.0.0.3"]), "admin", "secret")

        assert [(r.target, r.status_code) for r in responses] == [
            ("10.0.0.1", 200),
            ("10.0.0.2", 500),
            ("10.0.0.3", 500),
        ]
        assert "No space left" in responses[1].status
        assert [call[0] for call in client.calls] == ["10.0.0.1"]

    def test_token_failure_on_first_hop(self, work_dir):
        client = FakeBootstrapClient()
        service = CredentialService(work_dir / "certs", client, FailingTokenStore(work_dir / "tokens", 0))

        responses = service.distribute_client_credentials(_credentials(["10.0.0.2"]), "admin", "secret")

        assert [(r.target, r.status_code) for r in responses] == [("10.0.0.1", 500)]
        assert client.calls == []

    def test_bootstrap_not_repeated_in_clients(self, work_dir, token_store):
        client = FakeBootstrapClient()
        service = CredentialService(work_dir / "certs", client, token_store)

        responses = service.distribute_client_credentials(_credentials(["10.0.0.1", "10.0.0.2"]), "admin", "secret")

        assert [r.target for r in responses] == ["10.0.0.1", "10.0.0.2"]


@pytest.mark.unit
class TestAcquisition:
    """Test obtaining this node's client certificate."""

    def test_acquire(self, work_dir, token_store, certificate_authority):
        certs_dir = work_dir / "certs"
        service = CredentialService(certs_dir, FakeBootstrapClient(ca=certificate_authority), token_store)

        cert = service.acquire_client_credentials(_credentials(public_ip="203.0.113.9", auth_token="e" * 64))

        for name in (CA_CERT_FILE, CLIENT_KEY_FILE, CLIENT_CSR_FILE, CLIENT_CERT_FILE):
            assert (certs_dir / name).exists()
        assert stat.S_IMODE((certs_dir / CLIENT_KEY_FILE).stat().st_mode) == 0o600
        assert Certificate.load(certs_dir / CA_CERT_FILE) == certificate_authority.certificate
        assert cert.issuer == certificate_authority.certificate.subject
        assert "203.0.113.9" in cert.ip_addresses

    def test_acquire_is_idempotent(self, work_dir, token_store, certificate_authority):
        client = FakeBootstrapClient(ca=certificate_authority)
        service = CredentialService(work_dir / "certs", client, token_store)

        first = service.acquire_client_credentials(_credentials(auth_token="e" * 64))
        second = service.acquire_client_credentials(_credentials(auth_token="f" * 64))

        assert first == second
        assert client.csr_calls == 1

    def test_acquire_reuses_existing_key(self, work_dir, token_store, certificate_authority, signing_key):
        certs_dir = work_dir / "certs"
        signing_key.save(certs_dir / CLIENT_KEY_FILE)
        service = CredentialService(certs_dir, FakeBootstrapClient(ca=certificate_authority), token_store)

        cert = service.acquire_client_credentials(_credentials(auth_token="e" * 64))

        assert cert.matches_key(signing_key)

    def test_stale_csr_recreated(self, work_dir, token_store, certificate_authority, signing_key, other_key):
        """Test that a CSR left over from a previous key is replaced before submission."""
        certs_dir = work_dir / "certs"
        signing_key.save(certs_dir / CLIENT_KEY_FILE)
        CertificateRequest.create(other_key).save(certs_dir / CLIENT_CSR_FILE)
        client = FakeBootstrapClient(ca=certificate_authority)
        service = CredentialService(certs_dir, client, token_store)

        cert = service.acquire_client_credentials(_credentials(auth_token="e" * 64))

        assert cert.matches_key(signing_key)
        assert CertificateRequest.load(certs_dir / CLIENT_CSR_FILE).matches_key(signing_key)
        assert client.csr_calls == 1

    def test_acquire_requires_token(self, work_dir, token_store, certificate_authority):
        service = CredentialService(work_dir / "certs", FakeBootstrapClient(ca=certificate_authority), token_store)

        with pytest.raises(ValueError, match="AuthToken"):
            service.acquire_client_credentials(_credentials())

    def test_certificate_for_other_key_rejected(self, work_dir, token_store, certificate_authority, other_key):
        certs_dir = work_dir / "certs"
        client = FakeBootstrapClient(ca=certificate_authority, wrong_key=other_key)
        service = CredentialService(certs_dir, client, token_store)

        with pytest.raises(SigningError):
            service.acquire_client_credentials(_credentials(auth_token="e" * 64))
        assert not (certs_dir / CLIENT_CERT_FILE).exists()
