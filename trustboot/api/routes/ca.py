"""CA API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from trustboot.api.dependencies import get_certificate_authority, require_csr_auth
from trustboot.exceptions import ParseError, TrustBootError
from trustboot.models.pki import CertificateRequest
from trustboot.services.ca_service import CertificateAuthority

logger = logging.getLogger("trustboot")

PEM_MEDIA_TYPE = "application/x-pem-file"
FORM_MEDIA_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

router = APIRouter(prefix="/trustboot", tags=["CA"])


async def _read_csr(request: Request) -> bytes:
    """Take the CSR from the ``csr`` form field, a multipart ``file`` part or the raw body."""
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith(FORM_MEDIA_TYPES):
        return await request.body()

    form = await request.form()
    value = form.get("csr") or form.get("file")
    if isinstance(value, UploadFile):
        return await value.read()
    if isinstance(value, str):
        return value.encode("utf-8")
    return b""


@router.get("/ca")
def get_ca_certificate(ca: CertificateAuthority = Depends(get_certificate_authority)):
    """
    Download the CA certificate (PEM).
    """
    return Response(content=ca.certificate_pem(), media_type=PEM_MEDIA_TYPE)


@router.post("/csr/client", dependencies=[Depends(require_csr_auth)])
async def sign_client_csr(request: Request, ca: CertificateAuthority = Depends(get_certificate_authority)):
    """
    Sign a client CSR.

    Accepts a one-time ``Authorization: Token <hash>`` or Basic credentials
    with a signed body. Returns the issued certificate (PEM).
    """
    try:
        csr = CertificateRequest.from_pem(await _read_csr(request))
        certificate = await run_in_threadpool(ca.sign_csr, csr)
    except ParseError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TrustBootError as e:
        logger.error(f"Failed to sign client CSR: {e}")
        raise HTTPException(status_code=500, detail=f"Internal error: {str(e)}")

    logger.info(f"Issued client certificate serial={certificate.serial_number} subject={certificate.subject}")
    return Response(content=certificate.to_pem(), media_type=PEM_MEDIA_TYPE)
