from typing import Any, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

SIGN_ACTION = "SIGN"


class SigningGatewayError(Exception):
    def __init__(self, code: str, detail: Optional[Any] = None):
        super().__init__(code)
        self.code = code
        self.detail = detail


class SigningTransportError(SigningGatewayError):
    pass


class SigningProviderError(SigningGatewayError):
    pass


class SigningResponseError(SigningGatewayError):
    pass


class SigningConfigurationError(SigningGatewayError):
    pass


class DocumentSigner(BaseModel):
    public_id: str = Field(
        description="Provider signature public id used to mint signing links.",
        examples=["5f2b8f1e-2c1d-4b0e-9d55-5a8f0d1f4a11"],
    )
    name: Optional[str] = Field(default=None, examples=["Beta Ltda"])
    email: Optional[str] = Field(default=None, examples=["contact@beta.example"])
    action: Optional[str] = Field(default=None, examples=["SIGN"])


class CreatedDocument(BaseModel):
    document_id: str = Field(description="Provider document id.", examples=["c7b1f0a6d2"])
    name: Optional[str] = Field(default=None, examples=["Contract • Acme • Beta"])
    signers: List[DocumentSigner] = Field(default_factory=list)


class SigningGateway(Protocol):
    async def create_document(
        self,
        *,
        name: str,
        signer_name: str,
        signer_email: str,
        file_bytes: bytes,
        filename: str,
    ) -> CreatedDocument: ...

    async def create_signing_link(self, *, signer_id: str) -> str: ...

    async def get_status(self, *, document_id: str) -> Optional[str]: ...


def select_signer(
    signers: Sequence[DocumentSigner], *, email: str, action: str = SIGN_ACTION
) -> DocumentSigner:
    """Pick the signer entry for ``email``; fall back to the first signing entry."""
    wanted_email = email.strip().lower()
    wanted_action = action.upper()
    signing = [
        signer for signer in signers if (signer.action or "").upper() == wanted_action
    ]
    for signer in signing:
        if (signer.email or "").strip().lower() == wanted_email:
            return signer
    if signing:
        return signing[0]
    raise SigningResponseError("autentique_signer_missing")
