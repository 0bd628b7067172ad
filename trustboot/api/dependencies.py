"""FastAPI dependencies."""

import logging
import os
from functools import lru_cache
from pathlib import Path

from fastapi import Depends, HTTPException, Request, status

from trustboot.exceptions import AuthenticationError, ConfigurationError, SignatureError
from trustboot.models.config import AppConfig
from trustboot.models.pki import Key
from trustboot.services.auth_service import Authenticator, SignatureMethod
from trustboot.services.ca_service import CertificateAuthority
from trustboot.services.credential_service import TOKENS_DIR, CredentialService
from trustboot.services.token_service import TokenStore
from trustboot.services.transport import BootstrapClient
from trustboot.services.yaml_service import YAMLService

logger = logging.getLogger("trustboot")

CONFIG_ENV = "TRUSTBOOT_CONFIG"
CA_ROOT_ENV = "TRUSTBOOT_CA"
TOKEN_SCHEME = "Token "


@lru_cache
def get_config() -> AppConfig:
    """
    Get application configuration.

    Reads ``config.yaml`` (or the file named by ``TRUSTBOOT_CONFIG``);
    ``TRUSTBOOT_CA`` overrides the CA root directory.

    Returns:
        Application configuration
    """
    config_path = Path(os.environ.get(CONFIG_ENV, "config.yaml"))
    if config_path.exists():
        config = AppConfig(**YAMLService.load_yaml(config_path))
    else:
        logger.warning(f"{config_path} not found, using default configuration")
        config = AppConfig()

    ca_root = os.environ.get(CA_ROOT_ENV)
    if ca_root:
        config.paths.ca_root = ca_root
    return config


@lru_cache
def get_certificate_authority() -> CertificateAuthority:
    config = get_config()
    return CertificateAuthority.initialize(Path(config.paths.ca_root), config.ca)


@lru_cache
def get_authenticator() -> Authenticator:
    """
    Get the request authenticator.

    Raises:
        ConfigurationError: If credentials or the signature verification key
            are missing or unreadable
    """
    try:
        return Authenticator.from_settings(get_config().security)
    except (ValueError, OSError) as e:
        raise ConfigurationError(f"Invalid security settings: {e}") from e


@lru_cache
def get_token_store() -> TokenStore:
    config = get_config()
    return TokenStore(Path(config.paths.certs) / TOKENS_DIR, config.distribution.token_ttl_minutes)


@lru_cache
def get_bootstrap_client() -> BootstrapClient:
    config = get_config()
    signing_key = None
    if config.security.sign_key_file:
        signing_key = Key.load(Path(config.security.sign_key_file))
    return BootstrapClient(config.distribution, signing_key=signing_key)


def get_credential_service() -> CredentialService:
    """
    Get credential service instance.

    Returns:
        Credential service sharing the process-wide client and token store
    """
    config = get_config()
    return CredentialService(
        Path(config.paths.certs),
        get_bootstrap_client(),
        get_token_store(),
        config.distribution,
    )


def reset_services() -> None:
    """Drop cached configuration and services."""
    for factory in (get_config, get_certificate_authority, get_authenticator, get_token_store):
        factory.cache_clear()
    if get_bootstrap_client.cache_info().currsize:
        get_bootstrap_client().close()
    get_bootstrap_client.cache_clear()


def require_auth(method: SignatureMethod):
    """
    Build a dependency gating a route with the authenticator.

    Args:
        method: Whether the request body must carry a valid signature

    Returns:
        Dependency raising 401 on bad credentials and 406 on a bad signature
    """

    async def dependency(request: Request, authenticator: Authenticator = Depends(get_authenticator)) -> None:
        try:
            await authenticator.authenticate(request, method)
        except AuthenticationError as e:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
        except SignatureError as e:
            raise HTTPException(status_code=status.HTTP_406_NOT_ACCEPTABLE, detail=str(e))

    return dependency


async def require_csr_auth(
    request: Request,
    authenticator: Authenticator = Depends(get_authenticator),
    token_store: TokenStore = Depends(get_token_store),
) -> None:
    """Accept a one-time ``Token`` or Basic credentials with a signed body."""
    authorization = request.headers.get("authorization", "")
    if authorization.startswith(TOKEN_SCHEME):
        try:
            token_store.consume(authorization[len(TOKEN_SCHEME):].strip())
        except AuthenticationError as e:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"401 Unauthorized: {e}")
        return
    await require_auth(SignatureMethod.SIGNED)(request, authenticator)
