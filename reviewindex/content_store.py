"""GitHub content store client for reviewindex.

Documents live as markdown files in a GitHub repository and are read through
the Contents API (``GET /repos/{owner}/{repo}/contents/{path}``).

Failures are never raised to callers. A missing file and a failed request
both come back as ``None`` (or an empty listing), but they are logged
differently: a 404 is an ``info`` event, anything else is an ``error`` event
so outages stand out from missing content.

Key classes:
- StoreEntry: One file in a directory listing.
- GitHubContentStore: Async reader for documents and directory listings.

Key functions:
- build_http_client: Shared ``httpx.AsyncClient`` with an explicit timeout.
- decode_contents: Turn a raw or JSON/base64 response body into text.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from urllib.parse import quote

import httpx
import structlog

from . import __version__

log = structlog.get_logger()

GITHUB_API_URL = "https://api.github.com"
RAW_MEDIA_TYPE = "application/vnd.github.v3.raw"
JSON_MEDIA_TYPE = "application/vnd.github.v3+json"
DEFAULT_TIMEOUT_SECONDS = 8.0


def build_http_client(timeout: float = DEFAULT_TIMEOUT_SECONDS) -> httpx.AsyncClient:
    """Create the process-wide HTTP client used for content store reads."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": f"reviewindex/{__version__}"},
        follow_redirects=True,
    )


def decode_contents(body: bytes, content_type: str = "") -> str | None:
    """Decode a Contents API response body.

    The API answers with the raw file when asked for the raw media type, and
    with a JSON object carrying base64 ``content`` otherwise. Both are
    accepted here regardless of what was requested.

    Args:
        body: Response body.
        content_type: Response ``Content-Type`` header.

    Returns:
        Document text, or None when the body is a JSON object without
        inline content (directories, files too large to inline).
    """
    stripped = body.lstrip()
    looks_like_json = "json" in content_type.lower() or stripped[:1] in (b"{", b"[")
    if looks_like_json:
        try:
            payload = json.loads(body)
        except ValueError:
            payload = None
        if isinstance(payload, list):
            return None
        if isinstance(payload, dict) and ("content" in payload or "encoding" in payload):
            encoded = payload.get("content") or ""
            encoding = payload.get("encoding", "base64")
            if encoding != "base64" or not encoded:
                return None
            try:
                raw = base64.b64decode("".join(str(encoded).split()), validate=False)
            except (binascii.Error, ValueError):
                return None
            return raw.decode("utf-8", errors="replace")
    return body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class StoreEntry:
    """One entry of a Contents API directory listing."""

    name: str
    path: str
    sha: str = ""
    size: int = 0
    type: str = "file"
    download_url: str | None = None

    @property
    def slug(self) -> str:
        """File name without its ``.md`` extension."""
        return self.name[:-3] if self.name.endswith(".md") else self.name

    @property
    def is_markdown(self) -> bool:
        return self.type == "file" and self.name.endswith(".md")


class GitHubContentStore:
    """Reads documents from a GitHub repository through the Contents API.

    Attributes:
        owner: Repository owner.
        repo: Repository name.
        branch: Optional ref to read from (defaults to the repository default).
        api_url: API root, overridable for GitHub Enterprise and tests.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        owner: str,
        repo: str,
        token: str | None = None,
        branch: str | None = None,
        api_url: str = GITHUB_API_URL,
    ):
        self._client = client
        self._token = token or None
        self.owner = owner
        self.repo = repo
        self.branch = branch or None
        self.api_url = api_url.rstrip("/")

    def contents_url(self, path: str) -> str:
        """Return the Contents API URL for a repository path."""
        quoted = quote(path.strip("/"), safe="/-_.~")
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/contents/{quoted}"

    def _headers(self, accept: str) -> dict[str, str]:
        headers = {"Accept": accept}
        if self._token:
            headers["Authorization"] = f"token {self._token}"
        return headers

    def _params(self) -> dict[str, str]:
        return {"ref": self.branch} if self.branch else {}

    async def _get(self, path: str, accept: str) -> httpx.Response | None:
        url = self.contents_url(path)
        try:
            response = await self._client.get(
                url, headers=self._headers(accept), params=self._params()
            )
        except httpx.HTTPError as exc:
            log.error(
                "content_fetch_error",
                path=path,
                error=type(exc).__name__,
                detail=str(exc),
            )
            return None
        if response.status_code == 404:
            log.info("content_not_found", path=path)
            return None
        if not response.is_success:
            log.error(
                "content_fetch_failed",
                path=path,
                status=response.status_code,
                body=response.text[:200],
            )
            return None
        return response

    async def fetch_document(self, path: str) -> str | None:
        """Fetch the raw text of one document.

        Args:
            path: Repository path, e.g. ``content/reviews/widget-x.md``.

        Returns:
            The document text, or None when it is missing or unreadable.
        """
        response = await self._get(path, RAW_MEDIA_TYPE)
        if response is None:
            return None
        text = decode_contents(response.content, response.headers.get("content-type", ""))
        if text is None:
            log.warning("content_not_inline", path=path)
        return text

    async def list_directory(self, path: str) -> list[StoreEntry]:
        """List the entries of a repository directory.

        Args:
            path: Repository directory, e.g. ``content/reviews``.

        Returns:
            Entries in API order; empty when the directory is missing or the
            request failed.
        """
        response = await self._get(path, JSON_MEDIA_TYPE)
        if response is None:
            return []
        try:
            payload = response.json()
        except ValueError:
            log.error("content_listing_invalid", path=path)
            return []
        if not isinstance(payload, list):
            log.error("content_listing_invalid", path=path)
            return []
        entries = []
        for item in payload:
            if not isinstance(item, dict) or not item.get("name"):
                continue
            entries.append(
                StoreEntry(
                    name=str(item["name"]),
                    path=str(item.get("path") or f"{path.rstrip('/')}/{item['name']}"),
                    sha=str(item.get("sha") or ""),
                    size=int(item.get("size") or 0),
                    type=str(item.get("type") or "file"),
                    download_url=item.get("download_url"),
                )
            )
        return entries
