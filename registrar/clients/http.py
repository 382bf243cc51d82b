from __future__ import annotations

import json
from dataclasses import dataclass

import httpx

from registrar.domain.dto import EnrichmentRequest
from registrar.domain.error_taxonomy import ErrorCode
from registrar.domain.errors import FatalExternalFailure, TransientExternalFailure
from registrar.domain.models import AssetContext, AssetMetadata, LedgerReceipt, StorySummary
from registrar.domain.prompts import ENRICHMENT_SYSTEM_PROMPT, build_enrichment_prompt


@dataclass(frozen=True)
class HttpEndpoint:
    base_url: str
    api_key: str | None = None
    timeout_seconds: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None

    def client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout_seconds,
            transport=self.transport,
        )


async def _post_json(
    endpoint: HttpEndpoint,
    path: str,
    payload: dict[str, object],
    *,
    unavailable_code: ErrorCode,
    rejected_code: ErrorCode,
) -> dict[str, object]:
    """POST a JSON payload and classify failures as transient or fatal."""
    response = await _send(endpoint, "POST", path, payload, unavailable_code=unavailable_code)
    return _json_body(response, path, unavailable_code=unavailable_code, rejected_code=rejected_code)


async def _send(
    endpoint: HttpEndpoint,
    method: str,
    path: str,
    payload: dict[str, object] | None = None,
    *,
    unavailable_code: ErrorCode,
) -> httpx.Response:
    try:
        async with endpoint.client() as client:
            return await client.request(method, path, json=payload)
    except httpx.TimeoutException as exc:
        raise TransientExternalFailure(f"{path} timed out: {exc}", code="timeout") from exc
    except httpx.TransportError as exc:
        raise TransientExternalFailure(f"{path} unreachable: {exc}", code=unavailable_code) from exc
    except httpx.HTTPError as exc:
        # Decoding and protocol errors raised while reading the response.
        raise TransientExternalFailure(f"{path} failed: {exc}", code=unavailable_code) from exc


def _json_body(
    response: httpx.Response,
    path: str,
    *,
    unavailable_code: ErrorCode,
    rejected_code: ErrorCode,
) -> dict[str, object]:
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientExternalFailure(
            f"{path} returned {response.status_code}",
            code=unavailable_code,
        )
    if response.status_code >= 400:
        code = _error_code_from_body(response) or rejected_code
        raise FatalExternalFailure(f"{path} rejected request: {response.status_code} {response.text[:200]}", code=code)

    try:
        body = response.json()
    except ValueError as exc:
        raise FatalExternalFailure(f"{path} returned non-JSON body", code=rejected_code) from exc
    if not isinstance(body, dict):
        raise FatalExternalFailure(f"{path} returned unexpected body", code=rejected_code)
    return body


def _error_code_from_body(response: httpx.Response) -> ErrorCode | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("code") == "license_template_invalid":
        return "license_template_invalid"
    return None


@dataclass(frozen=True)
class HttpEnrichmentClient:
    """OpenAI-compatible chat-completions endpoint returning a JSON object."""

    endpoint: HttpEndpoint
    model: str
    temperature: float = 0.7

    async def enrich(self, request: EnrichmentRequest) -> AssetMetadata:
        body = await _post_json(
            self.endpoint,
            "/chat/completions",
            {
                "model": self.model,
                "temperature": self.temperature,
                "response_format": {"type": "json_object"},
                "messages": [
                    {"role": "system", "content": ENRICHMENT_SYSTEM_PROMPT},
                    {"role": "user", "content": build_enrichment_prompt(request)},
                ],
            },
            unavailable_code="enrichment_unavailable",
            rejected_code="enrichment_invalid_response",
        )
        try:
            content = body["choices"][0]["message"]["content"]  # type: ignore[index]
            parsed = json.loads(content)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise FatalExternalFailure(
                "enrichment response is not a JSON completion",
                code="enrichment_invalid_response",
            ) from exc
        if not isinstance(parsed, dict):
            raise FatalExternalFailure("enrichment response is not an object", code="enrichment_invalid_response")

        metadata = AssetMetadata.from_json(parsed)
        # A null title means "keep the current one".
        return AssetMetadata(
            title=metadata.title or request.current_title,
            description=metadata.description or request.current_description,
            attributes=metadata.attributes,
        )


@dataclass(frozen=True)
class HttpMetadataStorageClient:
    """Pinning service that stores a JSON document and returns its CID."""

    endpoint: HttpEndpoint

    async def upload(self, document: dict[str, object]) -> str:
        body = await _post_json(
            self.endpoint,
            "/pins/json",
            {"content": document},
            unavailable_code="storage_unavailable",
            rejected_code="storage_rejected",
        )
        cid = body.get("cid")
        if not isinstance(cid, str) or not cid:
            raise FatalExternalFailure("storage response has no cid", code="storage_rejected")
        return cid if "://" in cid else f"ipfs://{cid}"


@dataclass(frozen=True)
class HttpLedgerClient:
    endpoint: HttpEndpoint

    async def register(
        self,
        *,
        content_locator: str,
        license_template_id: str,
        owner_id: str,
    ) -> LedgerReceipt:
        body = await _post_json(
            self.endpoint,
            "/ip-assets",
            {
                "metadata_uri": content_locator,
                "license_template_id": license_template_id,
                "owner": owner_id,
            },
            unavailable_code="ledger_unavailable",
            rejected_code="ledger_rejected",
        )
        ledger_id = body.get("ip_id")
        transaction_ref = body.get("tx_hash")
        if not isinstance(ledger_id, str) or not isinstance(transaction_ref, str):
            raise FatalExternalFailure("ledger response is missing ip_id/tx_hash", code="ledger_rejected")
        return LedgerReceipt(ledger_id=ledger_id, transaction_ref=transaction_ref)


@dataclass(frozen=True)
class HttpAssetCatalog:
    """Asset content service: ``GET /assets/{id}`` and ``GET /storyworlds/{id}``.

    A 404 means the asset or storyworld does not exist and yields ``None``.
    """

    endpoint: HttpEndpoint

    async def get_asset(self, asset_id: str) -> AssetContext | None:
        body = await self._get(f"/assets/{asset_id}")
        if body is None:
            return None
        owner_id = body.get("owner_id")
        if not isinstance(owner_id, str) or not owner_id:
            raise FatalExternalFailure("asset response has no owner_id", code="catalog_rejected")
        storyworld = body.get("storyworld")
        return AssetContext(
            asset_id=asset_id,
            title=str(body.get("title") or asset_id),
            description=str(body.get("description") or ""),
            asset_type=str(body.get("type") or "unknown"),
            owner_id=owner_id,
            storyworld=_story_summary(storyworld) if isinstance(storyworld, dict) else None,
        )

    async def get_storyworld(self, storyworld_id: str) -> StorySummary | None:
        body = await self._get(f"/storyworlds/{storyworld_id}")
        return None if body is None else _story_summary(body)

    async def _get(self, path: str) -> dict[str, object] | None:
        response = await _send(self.endpoint, "GET", path, unavailable_code="catalog_unavailable")
        if response.status_code == 404:
            return None
        return _json_body(
            response,
            path,
            unavailable_code="catalog_unavailable",
            rejected_code="catalog_rejected",
        )


def _story_summary(body: dict[str, object]) -> StorySummary:
    themes = body.get("themes")
    return StorySummary(
        name=str(body.get("name") or ""),
        genre=str(body["genre"]) if body.get("genre") else None,
        themes=tuple(str(theme) for theme in themes) if isinstance(themes, list) else (),
    )
