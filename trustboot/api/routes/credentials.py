"""Client credential API endpoints."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from trustboot.api.dependencies import get_credential_service, require_auth
from trustboot.exceptions import TrustBootError
from trustboot.models.credentials import Credentials, Responses, StatusResponse
from trustboot.services.auth_service import SignatureMethod, get_auth_user_pass
from trustboot.services.credential_service import CredentialService

logger = logging.getLogger("trustboot")

router = APIRouter(prefix="/trustboot/client", tags=["Credentials"])


def _status(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=StatusResponse(status=message).model_dump(by_alias=True))


@router.post(
    "/credentials",
    response_model=StatusResponse,
    dependencies=[Depends(require_auth(SignatureMethod.SIGNED))],
)
def acquire_client_credentials(
    credentials: Credentials,
    service: CredentialService = Depends(get_credential_service),
):
    """
    Acquire this node's client certificate from the bootstrap server.

    Requires Basic credentials and a signed body.
    """
    try:
        service.acquire_client_credentials(credentials)
    except TrustBootError as e:
        logger.error(f"Failed to acquire client credentials: {e}")
        return _status(500, str(e))
    except ValueError as e:
        return _status(400, str(e))
    except OSError as e:
        logger.error(f"Failed to store client credentials: {e}")
        return _status(500, str(e))

    return StatusResponse(status="OK")


@router.post(
    "/credentials/distribute",
    response_model=Responses,
    dependencies=[Depends(require_auth(SignatureMethod.OPEN))],
)
def distribute_client_credentials(
    credentials: Credentials,
    request: Request,
    service: CredentialService = Depends(get_credential_service),
):
    """
    Push client credential requests to the bootstrap server and every client.

    Always answers 200; per-target outcomes are in the returned responses.
    The caller's Basic credentials are forwarded to each target.
    """
    user, password = get_auth_user_pass(request.headers.get("authorization"))
    return Responses(responses=service.distribute_client_credentials(credentials, user, password))
