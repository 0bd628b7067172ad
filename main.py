"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from trustboot.api.dependencies import get_authenticator, get_bootstrap_client, get_certificate_authority, get_config
from trustboot.api.routes import ca, credentials
from trustboot.exceptions import TrustBootError
from trustboot.models.credentials import StatusResponse
from trustboot.utils.logger import setup_logger

# Load configuration
config = get_config()

# Setup logging
setup_logger(config)
logger = logging.getLogger("trustboot")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan event handler."""
    # Startup
    settings = get_config()
    logger.info(f"Starting {settings.app.title} v{settings.app.version}")

    # Fail fast on missing credentials or verification key
    get_authenticator()

    logger.info(f"CA directory: {settings.paths.ca_root}")
    Path(settings.paths.certs).mkdir(parents=True, exist_ok=True)
    Path(settings.paths.logs).mkdir(parents=True, exist_ok=True)

    # Load or create the CA before the first request arrives
    authority = get_certificate_authority()
    logger.info(f"CA ready: {authority.certificate.subject}")

    yield

    # Shutdown
    if get_bootstrap_client.cache_info().currsize:
        get_bootstrap_client().close()
    logger.info(f"Shutting down {settings.app.title}")


# Create FastAPI app
app = FastAPI(
    title=config.app.title,
    version=config.app.version,
    debug=config.app.debug,
    description="""
    **trustboot** - Certificate authority and client credential bootstrap service.

    ## Endpoints
    - `GET /trustboot/ca`: CA certificate
    - `POST /trustboot/csr/client`: sign a client CSR
    - `POST /trustboot/client/credentials`: acquire this node's client certificate
    - `POST /trustboot/client/credentials/distribute`: push credential requests to a cluster
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


@app.exception_handler(TrustBootError)
async def trustboot_error_handler(request: Request, exc: TrustBootError):
    """Report unhandled service errors in the status envelope."""
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content=StatusResponse(status=str(exc)).model_dump(by_alias=True))


# Include API routers
app.include_router(ca.router)
app.include_router(credentials.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": config.app.version}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=config.distribution.port, reload=config.app.debug)
