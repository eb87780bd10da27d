"""Fetch capabilities: the boundary where documents are read or downloaded.

Every fetcher returns ``FetchResponse | None``; ``None`` stands for "no
response at all" and is turned into a NetworkError by the loader.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, runtime_checkable
from urllib.parse import quote

import aiohttp

from docviewer.errors import NetworkError, NotFoundError, ParseError

LOGGER = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
USER_AGENT = "docviewer/0.1"


@dataclass(frozen=True, slots=True)
class FetchResponse:
    status: int
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@runtime_checkable
class Fetcher(Protocol):
    """Reads raw bytes for a locator."""

    async def fetch(self, locator: str) -> Optional[FetchResponse]:
        ...


@runtime_checkable
class RepositoryClient(Protocol):
    """Lists files of a hosted repository."""

    async def list_files(self, repo: str, ref: str, path: str) -> List[str]:
        ...


class LocalFetcher:
    """Reads files below a base directory."""

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(os.path.realpath(Path(base_path).expanduser()))

    def _resolve(self, locator: str) -> Path:
        # Resolve symlinks and ``..`` before checking the file stays under base_path.
        real = Path(os.path.realpath(self.base_path / locator))
        if real != self.base_path and self.base_path not in real.parents:
            raise NotFoundError(f"Path escapes the documentation folder: {locator}")
        return real

    async def fetch(self, locator: str) -> Optional[FetchResponse]:
        path = self._resolve(locator)
        if not path.is_file():
            return FetchResponse(status=404)
        data = await asyncio.to_thread(path.read_bytes)
        return FetchResponse(status=200, body=data)


class InlineFetcher:
    """Serves content embedded in the configuration."""

    def __init__(self, contents: Optional[Mapping[str, str]] = None) -> None:
        self.contents: Dict[str, str] = dict(contents or {})

    async def fetch(self, locator: str) -> Optional[FetchResponse]:
        content = self.contents.get(locator)
        if content is None:
            return FetchResponse(status=404)
        return FetchResponse(status=200, body=content.encode("utf-8"))


class _SessionMixin:
    """Lazily created aiohttp session shared by the HTTP based clients."""

    _session: Optional[aiohttp.ClientSession] = None
    headers: Dict[str, str]
    timeout_ms: Optional[int] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0 if self.timeout_ms else None)
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": USER_AGENT, **self.headers}, timeout=timeout
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class HttpFetcher(_SessionMixin):
    """Downloads documents relative to a base URL."""

    def __init__(
        self,
        base_url: str = "",
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout_ms: Optional[int] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout_ms = timeout_ms
        self._session = None

    def url_for(self, locator: str) -> str:
        if locator.startswith(("http://", "https://")) or not self.base_url:
            return locator
        return f"{self.base_url}/{locator.lstrip('/')}"

    async def fetch(self, locator: str) -> Optional[FetchResponse]:
        url = self.url_for(locator)
        LOGGER.debug("GET %s", url)
        async with self._get_session().get(url) as response:
            body = await response.read()
            return FetchResponse(status=response.status, body=body, headers=dict(response.headers))


def _rate_limited(response_headers: Mapping[str, str]) -> bool:
    return response_headers.get("X-RateLimit-Remaining") == "0"


class GitHubClient(_SessionMixin):
    """Contents and tree access through the GitHub REST API.

    Serves both as the fetch capability for GitHub sources and as the
    repository listing client used during resolution.
    """

    def __init__(
        self,
        repo: str = "",
        ref: str = "main",
        *,
        token: Optional[str] = None,
        api_url: str = GITHUB_API,
        timeout_ms: Optional[int] = None,
    ) -> None:
        self.repo = repo
        self.timeout_ms = timeout_ms
        self.ref = ref
        self.api_url = api_url.rstrip("/")
        self.headers = {"Accept": "application/vnd.github.v3+json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self._session = None

    async def _get_json(self, url: str) -> tuple[int, Mapping[str, str], object]:
        async with self._get_session().get(url) as response:
            headers = dict(response.headers)
            if response.status != 200:
                return response.status, headers, None
            text = await response.text()
        try:
            return 200, headers, json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(f"GitHub returned invalid JSON for {url}") from exc

    async def fetch(self, locator: str) -> Optional[FetchResponse]:
        url = f"{self.api_url}/repos/{self.repo}/contents/{quote(locator)}?ref={quote(self.ref)}"
        status, headers, data = await self._get_json(url)
        if status == 403 and _rate_limited(headers):
            raise NetworkError(f"GitHub API rate limit exceeded for {locator}", status=status)
        if status != 200:
            return FetchResponse(status=status, headers=headers)

        if isinstance(data, list):
            raise ParseError(f"GitHub path {locator} is a directory, not a file")
        if not isinstance(data, dict) or not data.get("content"):
            raise ParseError(f"No content found in GitHub response for {locator}")
        try:
            body = base64.b64decode("".join(str(data["content"]).split()), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ParseError(f"GitHub content for {locator} is not valid base64") from exc
        return FetchResponse(status=200, body=body, headers=headers)

    async def list_files(self, repo: str, ref: str, path: str) -> List[str]:
        url = f"{self.api_url}/repos/{repo}/git/trees/{quote(ref)}?recursive=1"
        status, headers, data = await self._get_json(url)
        if status == 404:
            raise NotFoundError(f"GitHub repository or ref not found: {repo}@{ref}")
        if status != 200:
            raise NetworkError(f"GitHub tree listing failed with HTTP {status}", status=status)
        if not isinstance(data, dict) or not isinstance(data.get("tree"), list):
            raise ParseError(f"Unexpected GitHub tree response for {repo}@{ref}")
        if data.get("truncated"):
            LOGGER.warning("GitHub tree for %s@%s is truncated", repo, ref)

        prefix = f"{path.strip('/')}/" if path.strip("/") else ""
        files = [
            entry["path"]
            for entry in data["tree"]
            if entry.get("type") == "blob" and str(entry.get("path", "")).startswith(prefix)
        ]
        return sorted(files)


class RoutingFetcher:
    """Serves locators with embedded content inline, everything else from ``primary``."""

    def __init__(self, primary: Fetcher, inline: InlineFetcher) -> None:
        self.primary = primary
        self.inline = inline

    async def fetch(self, locator: str) -> Optional[FetchResponse]:
        if locator in self.inline.contents:
            return await self.inline.fetch(locator)
        return await self.primary.fetch(locator)
