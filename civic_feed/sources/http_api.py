from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Set

import httpx

from ..errors import SourceUnavailable
from ..models import ContentItem, SourceSettings
from ..utils.logging import get_logger
from .base import CandidateFilter, ContentSource


class HttpContentSource(ContentSource):
    """Reads candidates and the social graph from the platform's REST backend.

    Expected endpoints, relative to ``base_url``:

    - ``GET  /feed/candidates`` with ``since``, ``excludeAuthorId``, ``authorIds``, ``tags``, ``visibleOnly``, ``limit``
    - ``GET  /users/{id}/reputation`` -> ``{"reputation": 72.5}`` (404 when unknown)
    - ``GET  /users/{id}/following`` -> ``{"ids": [...]}``
    - ``GET  /users/{id}/friends`` -> ``{"ids": [...]}``
    - ``POST /users/{id}/likes/lookup`` with ``{"postIds": [...]}`` -> ``{"ids": [...]}``
    - ``GET  /users/{id}/interests`` -> ``{"embeddings": [[...], ...]}``
    """

    def __init__(self, settings: SourceSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not settings.base_url:
            raise ValueError("HTTP content source requires source.base_url")
        headers = {"Accept": "application/json"}
        if settings.api_token:
            headers["Authorization"] = f"Bearer {settings.api_token}"
        self._client = httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            headers=headers,
            timeout=settings.timeout_s,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Optional[Dict[str, Any]]:
        try:
            response = await self._client.request(method, path, **kwargs)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            get_logger(__name__).warning("Backend returned an error", extra={"path": path, "status": exc.response.status_code})
            raise SourceUnavailable(f"{method} {path} returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            get_logger(__name__).warning("Backend request failed", extra={"path": path, "error": str(exc)})
            raise SourceUnavailable(f"{method} {path} failed: {exc}") from exc

    async def fetch_candidate_posts(self, flt: CandidateFilter) -> List[ContentItem]:
        params: Dict[str, Any] = {"limit": flt.limit, "visibleOnly": str(flt.visible_only).lower()}
        if flt.since:
            params["since"] = flt.since.isoformat()
        if flt.exclude_author_id:
            params["excludeAuthorId"] = flt.exclude_author_id
        if flt.author_ids is not None:
            if not flt.author_ids:
                return []
            params["authorIds"] = ",".join(sorted(flt.author_ids))
        if flt.tags:
            params["tags"] = ",".join(flt.tags)
        payload = await self._request("GET", "/feed/candidates", params=params) or {}

        items: List[ContentItem] = []
        for raw in payload.get("posts", []):
            try:
                items.append(ContentItem.model_validate(raw))
            except ValueError as exc:
                get_logger(__name__).warning("Dropping malformed post", extra={"post_id": raw.get("id"), "error": str(exc)})
        return items

    async def fetch_author_reputation(self, author_id: str) -> Optional[float]:
        payload = await self._request("GET", f"/users/{author_id}/reputation")
        if not payload or payload.get("reputation") is None:
            return None
        return float(payload["reputation"])

    async def fetch_viewer_following(self, viewer_id: str) -> Set[str]:
        payload = await self._request("GET", f"/users/{viewer_id}/following") or {}
        return set(payload.get("ids", []))

    async def fetch_viewer_friends(self, viewer_id: str) -> Set[str]:
        payload = await self._request("GET", f"/users/{viewer_id}/friends") or {}
        return set(payload.get("ids", []))

    async def fetch_viewer_likes(self, viewer_id: str, item_ids: Iterable[str]) -> Set[str]:
        ids = list(item_ids)
        if not ids:
            return set()
        payload = await self._request("POST", f"/users/{viewer_id}/likes/lookup", json={"postIds": ids}) or {}
        return set(payload.get("ids", [])) & set(ids)

    async def fetch_viewer_interests(self, viewer_id: str) -> List[List[float]]:
        payload = await self._request("GET", f"/users/{viewer_id}/interests") or {}
        return [list(map(float, embedding)) for embedding in payload.get("embeddings", []) if embedding]

    async def close(self) -> None:
        await self._client.aclose()
