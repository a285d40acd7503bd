"""Minimal GitHub REST client shared by the issue tracker and the dispatcher."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, Final

import httpx
import structlog

from hachiko.errors import PersistenceError

DEFAULT_API_URL: Final[str] = "https://api.github.com"
DEFAULT_TOKEN_ENV: Final[str] = "GITHUB_TOKEN"
_API_VERSION: Final[str] = "2022-11-28"
_MAX_PAGES: Final[int] = 50


class GitHubApi:
    """
    Authenticated JSON requests against one repository.

    The token is read from ``token_env`` on every request. Transport and status
    failures surface as ``PersistenceError``.
    """

    def __init__(
        self,
        repository: str,
        *,
        api_url: str = DEFAULT_API_URL,
        token_env: str = DEFAULT_TOKEN_ENV,
        client: httpx.AsyncClient | None = None,
        environ: Mapping[str, str] | None = None,
        timeout_seconds: float = 30.0,
        logger: Any | None = None,
    ) -> None:
        owner, _, name = repository.partition("/")
        if not owner or not name or "/" in name:
            raise ValueError(f"repository must be 'owner/name', got {repository!r}")
        self._repository = repository
        self._api_url = api_url.rstrip("/")
        self._token_env = token_env
        self._client = client
        self._owns_client = client is None
        self._environ = environ if environ is not None else os.environ
        self._timeout_seconds = timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def repository(self) -> str:
        return self._repository

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        path: str,
        *,
        payload: Mapping[str, Any] | None = None,
        params: Mapping[str, str | int] | None = None,
    ) -> Any:
        response = await self._send(method, self._url(path), payload=payload, params=params)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def paginate(
        self,
        path: str,
        *,
        params: Mapping[str, str | int] | None = None,
    ) -> list[Any]:
        """GET every page of a list endpoint by following ``Link: rel="next"``."""
        items: list[Any] = []
        url: str | None = self._url(path)
        query: Mapping[str, str | int] | None = {"per_page": 100, **(params or {})}
        for _ in range(_MAX_PAGES):
            if url is None:
                break
            response = await self._send("GET", url, params=query)
            page = response.json()
            if not isinstance(page, list):
                raise PersistenceError(f"GitHub API GET {path} returned a non-list page")
            items.extend(page)
            url = response.links.get("next", {}).get("url")
            query = None
        return items

    def _url(self, path: str) -> str:
        return f"{self._api_url}/repos/{self._repository}{path}"

    def _headers(self) -> dict[str, str]:
        token = self._environ.get(self._token_env)
        if token is None or not token.strip():
            raise PersistenceError(
                f"missing GitHub token; set the {self._token_env} environment variable"
            )
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token.strip()}",
            "User-Agent": "Hachiko/1.0",
            "X-GitHub-Api-Version": _API_VERSION,
        }

    async def _send(
        self,
        method: str,
        url: str,
        *,
        payload: Mapping[str, Any] | None = None,
        params: Mapping[str, str | int] | None = None,
    ) -> httpx.Response:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_seconds)
            self._owns_client = True
        try:
            response = await self._client.request(
                method,
                url,
                json=payload,
                params=params,
                headers=self._headers(),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._logger.error(
                "github_request_failed",
                method=method,
                url=url,
                status=exc.response.status_code,
            )
            raise PersistenceError(
                f"GitHub API {method} {url} failed with {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            self._logger.error("github_request_failed", method=method, url=url, error=str(exc))
            raise PersistenceError(f"GitHub API {method} {url} failed: {exc}") from exc
        return response


__all__ = ["DEFAULT_API_URL", "DEFAULT_TOKEN_ENV", "GitHubApi"]
