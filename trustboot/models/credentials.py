"""Credential bootstrap wire models."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from trustboot.exceptions import PartialDistributionError


class Server(BaseModel):
    """A server taking part in credential distribution."""

    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(..., alias="Address", min_length=1)


class Credentials(BaseModel):
    """
    Credential bootstrap request.

    ``servers[0]`` is always the node issuing or forwarding the request.
    """

    model_config = ConfigDict(populate_by_name=True)

    servers: List[Server] = Field(..., alias="Servers", min_length=1)
    clients: List[str] = Field(default_factory=list, alias="Clients")
    public_ip: Optional[str] = Field(None, alias="PublicIP")
    auth_token: Optional[str] = Field(None, alias="AuthToken")

    @property
    def bootstrap_address(self) -> str:
        """Address of the bootstrap server."""
        return self.servers[0].address

    def targets(self) -> List[str]:
        """
        Distribution targets in enumeration order.

        Returns:
            The bootstrap server followed by the clients, without repeating it
        """
        first = self.bootstrap_address
        return [first] + [client for client in self.clients if client != first]

    def to_json_bytes(self) -> bytes:
        """Serialize with wire aliases."""
        return self.model_dump_json(by_alias=True).encode("utf-8")


class DistributionResponse(BaseModel):
    """Outcome of a single distribution call."""

    model_config = ConfigDict(populate_by_name=True)

    target: str = Field("", alias="Target")
    status_code: int = Field(..., alias="StatusCode")
    status: str = Field("", alias="Status")

    @property
    def ok(self) -> bool:
        return self.status_code == 200


class Responses(BaseModel):
    """Aggregated distribution outcomes."""

    model_config = ConfigDict(populate_by_name=True)

    responses: List[DistributionResponse] = Field(default_factory=list, alias="Responses")

    def failures(self) -> List[DistributionResponse]:
        return [r for r in self.responses if not r.ok]

    def raise_for_failures(self) -> None:
        """
        Raise if any target reported non-success.

        Raises:
            PartialDistributionError: If at least one entry is not 200
        """
        if self.failures():
            raise PartialDistributionError(self.responses)


class StatusResponse(BaseModel):
    """Single status envelope."""

    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(..., alias="Status")


class SignedRequestBody(BaseModel):
    """Signature and the exact bytes it was verified against."""

    signature: str
    signed_payload: bytes
