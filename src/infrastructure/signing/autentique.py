import json
import logging
from typing import Any, Optional

import httpx

from src.core.signing.gateway import (
    SIGN_ACTION,
    CreatedDocument,
    DocumentSigner,
    SigningConfigurationError,
    SigningProviderError,
    SigningResponseError,
    SigningTransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_GRAPHQL_URL = "https://api.autentique.com.br/v2/graphql"
DEFAULT_TIMEOUT_SECONDS = 30.0
ENDPOINT_HINT = "check AUTENTIQUE_GQL_URL: v2/graphql vs v2/graphql/corporate"

CREATE_DOCUMENT_MUTATION = """
mutation CreateDocumentMutation($document: DocumentInput!, $signers: [SignerInput!]!, $file: Upload!) {
  createDocument(document: $document, signers: $signers, file: $file) {
    id
    name
    signatures { public_id name email action { name } }
  }
}
""".strip()

CREATE_LINK_MUTATION = """
mutation CreateLink($publicId: UUID!) {
  createLinkToSignature(public_id: $publicId) { short_link }
}
""".strip()

DOCUMENT_STATUS_QUERY = """
query DocumentStatus($id: UUID!) {
  document(id: $id) { id status }
}
""".strip()


class AutentiqueGateway:
    """Autentique GraphQL v2 client.

    Each call opens a short-lived ``httpx.AsyncClient``; nothing is retried, so a failed
    ``create_document`` never produces a second provider document.
    """

    def __init__(
        self,
        *,
        api_token: str,
        graphql_url: str = DEFAULT_GRAPHQL_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_token.strip():
            raise SigningConfigurationError("missing_autentique_token")
        self._api_token = api_token.strip()
        self._graphql_url = graphql_url.strip() or DEFAULT_GRAPHQL_URL
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    async def create_document(
        self,
        *,
        name: str,
        signer_name: str,
        signer_email: str,
        file_bytes: bytes,
        filename: str,
    ) -> CreatedDocument:
        operations = {
            "query": CREATE_DOCUMENT_MUTATION,
            "variables": {
                "document": {"name": name},
                "signers": [{"name": signer_name, "email": signer_email, "action": SIGN_ACTION}],
                "file": None,
            },
        }
        response = await self._post(
            data={
                "operations": json.dumps(operations),
                "map": json.dumps({"0": ["variables.file"]}),
            },
            files={"0": (filename, file_bytes, "application/pdf")},
        )
        body = _json_body(response)
        created = _path(body, "data", "createDocument")
        if not response.is_success or not isinstance(created, dict):
            raise _provider_error(response, body)
        if not created.get("id"):
            raise SigningResponseError("autentique_malformed_response", {"field": "id"})

        signers = [
            DocumentSigner(
                public_id=str(signature.get("public_id") or ""),
                name=signature.get("name"),
                email=signature.get("email"),
                action=_path(signature, "action", "name"),
            )
            for signature in created.get("signatures") or []
            if isinstance(signature, dict) and signature.get("public_id")
        ]
        logger.info(
            "Autentique document created. DocumentId=%s Signers=%s", created["id"], len(signers)
        )
        return CreatedDocument(
            document_id=str(created["id"]), name=created.get("name"), signers=signers
        )

    async def create_signing_link(self, *, signer_id: str) -> str:
        response = await self._post(
            json_payload={"query": CREATE_LINK_MUTATION, "variables": {"publicId": signer_id}}
        )
        body = _json_body(response)
        link = _path(body, "data", "createLinkToSignature", "short_link")
        if not response.is_success or not link:
            raise _provider_error(response, body)
        return str(link)

    async def get_status(self, *, document_id: str) -> Optional[str]:
        try:
            response = await self._post(
                json_payload={"query": DOCUMENT_STATUS_QUERY, "variables": {"id": document_id}}
            )
        except SigningTransportError:
            logger.warning("Autentique status poll failed. DocumentId=%s", document_id)
            return None
        status = _path(_json_body(response), "data", "document", "status")
        if not response.is_success or not status:
            logger.warning(
                "Autentique status unavailable. DocumentId=%s HttpStatus=%s",
                document_id,
                response.status_code,
            )
            return None
        return str(status).lower()

    async def _post(
        self,
        *,
        json_payload: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, str]] = None,
        files: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._api_token}"}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                return await client.post(
                    self._graphql_url,
                    headers=headers,
                    json=json_payload,
                    data=data,
                    files=files,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise SigningTransportError(
                "autentique_transport_error", {"message": str(exc)}
            ) from exc


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _path(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _provider_error(response: httpx.Response, body: Any) -> SigningProviderError:
    message = ""
    errors = _path(body, "errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        message = str(errors[0].get("message") or "").strip()
    if message:
        return SigningProviderError(f"autentique_{message}", {"http_status": response.status_code})
    detail: dict[str, Any] = {"http_status": response.status_code}
    if response.status_code == 404:
        detail["hint"] = ENDPOINT_HINT
    return SigningProviderError(f"autentique_http_{response.status_code}", detail)
