from src.core.signing.gateway import (
    CreatedDocument,
    DocumentSigner,
    SigningConfigurationError,
    SigningGateway,
    SigningGatewayError,
    SigningProviderError,
    SigningResponseError,
    SigningTransportError,
    select_signer,
)

__all__ = [
    "CreatedDocument",
    "DocumentSigner",
    "SigningConfigurationError",
    "SigningGateway",
    "SigningGatewayError",
    "SigningProviderError",
    "SigningResponseError",
    "SigningTransportError",
    "select_signer",
]
