from __future__ import annotations

import time
from urllib.parse import quote, urlsplit, urlunsplit

import httpx
from pydantic import ValidationError

from scholarchat.config import settings
from scholarchat.errors import CatalogError, SchemaError
from scholarchat.models.catalog import CatalogPage
from scholarchat.services import logger as log_service

CATALOG_HEADERS = {"Accept": "application/json"}


def _set_query_param(url: str, name: str, value: str, *, replace: bool = True) -> str:
    # Edit the raw query so the model-written filter expression is left byte-for-byte.
    parts = urlsplit(url)
    pairs = [pair for pair in parts.query.split("&") if pair]
    encoded = f"{name}={quote(value, safe='@')}"
    present = [i for i, pair in enumerate(pairs) if pair.split("=", 1)[0] == name]
    if present:
        if not replace:
            return url
        pairs = [pair for i, pair in enumerate(pairs) if i not in present[1:]]
        pairs[present[0]] = encoded
    else:
        pairs.append(encoded)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "&".join(pairs), parts.fragment))


def with_page(request_url: str, page: int) -> str:
    """Return `request_url` addressing `page`, appending or replacing the page parameter."""
    if page < 1:
        raise ValueError("page must be >= 1")
    return _set_query_param(request_url, "page", str(page))


def _with_mailto(request_url: str) -> str:
    mailto = settings.catalog_mailto.strip()
    if not mailto:
        return request_url
    return _set_query_param(request_url, "mailto", mailto, replace=False)


async def fetch_page(
    request_url: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> CatalogPage:
    """Fetch and validate one page of catalog results."""
    url = _with_mailto(request_url)
    t0 = time.monotonic()
    try:
        if client is not None:
            response = await client.get(url, headers=CATALOG_HEADERS)
        else:
            async with httpx.AsyncClient(timeout=settings.catalog_timeout_seconds) as owned:
                response = await owned.get(url, headers=CATALOG_HEADERS)
    except httpx.HTTPError as exc:
        log_service.log_catalog_request(url=url, status="error", error=str(exc))
        raise CatalogError(f"Could not reach the works catalog: {exc}") from exc

    elapsed_ms = int((time.monotonic() - t0) * 1000)
    if not response.is_success:
        body = response.text
        log_service.log_catalog_request(
            url=url,
            status="error",
            status_code=response.status_code,
            duration_ms=elapsed_ms,
            error=body[:500],
        )
        raise CatalogError(
            body.strip() or f"Catalog request failed with status {response.status_code}",
            status_code=response.status_code,
            body=body,
        )

    try:
        page = CatalogPage.model_validate(response.json())
    except ValueError as exc:
        # ValidationError and JSONDecodeError are both ValueErrors.
        detail = "did not match the expected schema" if isinstance(exc, ValidationError) else "was not valid JSON"
        log_service.log_catalog_request(
            url=url,
            status="error",
            status_code=response.status_code,
            duration_ms=elapsed_ms,
            error=str(exc)[:500],
        )
        raise SchemaError(
            f"Catalog response {detail}",
            status_code=response.status_code,
            body=response.text,
        ) from exc

    log_service.log_catalog_request(
        url=url,
        status="success",
        status_code=response.status_code,
        duration_ms=elapsed_ms,
        results=len(page.results),
    )
    return page
