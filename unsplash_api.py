"""
Daybreak — Unsplash API
=======================
Minimal Unsplash client: one random photo, one image download.

Authentication uses the public ``Client-ID <access key>`` scheme.  Every
failure (transport error, timeout, non-2xx status, unexpected payload)
surfaces as :class:`ProviderError` so callers only handle one type.

Usage
-----
>>> api = UnsplashAPI("my-access-key")
>>> photo = api.fetch_random_photo(["nature", "mountains"])
>>> data = api.download_image_bytes(photo.raw_url, width=3840, quality=85)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

log = logging.getLogger("Daybreak.Unsplash")

API_URL = "https://api.unsplash.com"

REQUEST_TIMEOUT  = 15     # seconds, JSON endpoints
DOWNLOAD_TIMEOUT = 120    # seconds, full-size image


class ProviderError(Exception):
    """The photo service could not deliver.  ``http_status`` may be None."""

    def __init__(self, message: str, http_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.http_status = http_status


@dataclass(frozen=True)
class Photo:
    id: str
    raw_url: str
    width: int = 0
    height: int = 0
    description: str = ""
    author_name: str = ""
    author_username: str = ""


# ═════════════════════════════════════════════════════════════
#  UnsplashAPI — PhotoProvider
# ═════════════════════════════════════════════════════════════
class UnsplashAPI:
    """
    Parameters
    ----------
    api_key : str
        Unsplash access key.
    client : httpx.Client, optional
        Pre-built client (tests inject one with a ``MockTransport``).
        When omitted a client is created and owned by this instance.
    """

    def __init__(self, api_key: str, client: httpx.Client | None = None) -> None:
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=API_URL,
            timeout=REQUEST_TIMEOUT,
            follow_redirects=True,
        )

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "UnsplashAPI":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ─────────────────────────────────────────────────────────
    #  Random photo
    # ─────────────────────────────────────────────────────────
    def fetch_random_photo(
        self,
        keywords: Sequence[str] = (),
        orientation: str = "landscape",
    ) -> Photo:
        params = {"orientation": orientation}
        query = ",".join(k.strip() for k in keywords if k.strip())
        if query:
            params["query"] = query

        log.debug("Fetching random photo (keywords: %s)", query or "none")
        data = self._get_json("/photos/random", params)

        try:
            user = data.get("user") or {}
            return Photo(
                id=str(data["id"]),
                raw_url=str(data["urls"]["raw"]),
                width=int(data.get("width") or 0),
                height=int(data.get("height") or 0),
                description=(
                    data.get("description") or data.get("alt_description") or ""
                ),
                author_name=user.get("name") or "",
                author_username=user.get("username") or "",
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ProviderError(f"Unexpected photo payload: {exc!r}") from None

    # ─────────────────────────────────────────────────────────
    #  Image download
    # ─────────────────────────────────────────────────────────
    def download_image_bytes(
        self, url: str, width: int = 3840, quality: int = 85
    ) -> bytes:
        """Stream the image at *url*, resized server-side to *width* px."""
        target = httpx.URL(url).copy_merge_params({"w": width, "q": quality})
        log.debug("Downloading image (%dpx, q%d)", width, quality)

        buf = bytearray()
        try:
            with self._client.stream(
                "GET", target, timeout=DOWNLOAD_TIMEOUT
            ) as resp:
                resp.raise_for_status()
                for chunk in resp.iter_bytes(chunk_size=65_536):
                    buf.extend(chunk)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ProviderError(f"Download failed: HTTP {status}", status) from None
        except httpx.HTTPError as exc:
            raise ProviderError(f"Download failed: {exc}") from None

        if not buf:
            raise ProviderError("Download returned an empty body")
        return bytes(buf)

    # ── helpers ─────────────────────────────────────────────
    def _get_json(self, path: str, params: dict) -> dict:
        headers = {
            "Authorization": f"Client-ID {self._api_key}",
            "Accept-Version": "v1",
        }
        try:
            resp = self._client.get(path, params=params, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ProviderError(f"{path} failed: HTTP {status}", status) from None
        except httpx.HTTPError as exc:
            raise ProviderError(f"{path} failed: {exc}") from None
        except ValueError:
            raise ProviderError(f"{path} returned invalid JSON") from None

        if not isinstance(data, dict):
            raise ProviderError(f"{path} returned {type(data).__name__}, not an object")
        return data
