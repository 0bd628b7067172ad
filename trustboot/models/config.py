"""Application configuration models."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class AppSettings(BaseModel):
    """Application settings."""

    title: str = "trustboot"
    version: str = "1.0.0"
    debug: bool = False


class PathSettings(BaseModel):
    """Path settings."""

    ca_root: str = "./ca"
    certs: str = "./certs"
    logs: str = "./logs"


class CASettings(BaseModel):
    """Root CA settings."""

    common_name: str = "trustboot CA"
    organization: Optional[str] = None
    key_size: int = Field(2048, ge=2048)
    validity_days: int = Field(3650, gt=0)


class SecuritySettings(BaseModel):
    """Credentials and signature keys."""

    username: str = ""
    password: str = ""
    sign_verify_key: Optional[str] = None  # PEM public key
    sign_verify_key_file: Optional[str] = None
    sign_key_file: Optional[str] = None  # PEM private key for forwarded requests

    def load_verify_key(self) -> bytes:
        """
        Return the signature verification key as PEM bytes.

        Returns:
            PEM bytes, empty when no key is configured
        """
        if self.sign_verify_key:
            return self.sign_verify_key.encode("utf-8")
        if self.sign_verify_key_file:
            return Path(self.sign_verify_key_file).read_bytes()
        return b""


class DistributionSettings(BaseModel):
    """Outbound distribution settings."""

    scheme: str = "http"
    port: int = 7070
    timeout_seconds: float = Field(30.0, gt=0)
    max_workers: int = Field(16, ge=1)
    token_id_length: int = Field(10, ge=1)
    token_secret_length: int = Field(10, ge=1)
    token_ttl_minutes: Optional[int] = 60


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str = "./logs/trustboot.log"


class AppConfig(BaseModel):
    """Main application configuration."""

    app: AppSettings = AppSettings()
    paths: PathSettings = PathSettings()
    ca: CASettings = CASettings()
    security: SecuritySettings = SecuritySettings()
    distribution: DistributionSettings = DistributionSettings()
    logging: LoggingSettings = LoggingSettings()
