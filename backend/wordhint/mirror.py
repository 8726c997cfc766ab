"""Best-effort copies of the content-store snapshot outside the process."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from . import config

logger = logging.getLogger(__name__)


class SnapshotMirror:
    """Interface for a secondary home of the store snapshot.

    Implementations may raise; the store logs and ignores every mirror error.
    """

    name = "mirror"

    def push(self, snapshot: dict[str, Any]) -> None:
        raise NotImplementedError

    def pull(self) -> dict[str, Any] | None:
        raise NotImplementedError


class UpstashMirror(SnapshotMirror):
    """Stores the snapshot as one string value through the Upstash Redis REST API."""

    name = "upstash"

    def __init__(
        self,
        url: str,
        token: str,
        key: str = config.MIRROR_KEY,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._key = key
        self._client = httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    def push(self, snapshot: dict[str, Any]) -> None:
        resp = self._client.post(
            f"{self._url}/set/{self._key}",
            content=json.dumps(snapshot, ensure_ascii=False),
        )
        resp.raise_for_status()

    def pull(self) -> dict[str, Any] | None:
        resp = self._client.get(f"{self._url}/get/{self._key}")
        resp.raise_for_status()
        raw = resp.json().get("result")
        if not raw:
            return None
        return json.loads(raw)

    def close(self) -> None:
        self._client.close()


class CloudflareKVMirror(SnapshotMirror):
    """Stores the snapshot as one value in a Cloudflare Workers KV namespace."""

    name = "cloudflare-kv"

    def __init__(
        self,
        account_id: str,
        namespace_id: str,
        token: str,
        key: str = config.MIRROR_KEY,
        timeout: float = 5.0,
        api_base: str = "https://api.cloudflare.com/client/v4",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._value_url = (
            f"{api_base.rstrip('/')}/accounts/{account_id}/storage/kv/namespaces/"
            f"{namespace_id}/values/{quote(key, safe='')}"
        )
        self._client = httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    def push(self, snapshot: dict[str, Any]) -> None:
        resp = self._client.put(
            self._value_url,
            content=json.dumps(snapshot, ensure_ascii=False),
            headers={"Content-Type": "application/json"},
        )
        resp.raise_for_status()

    def pull(self) -> dict[str, Any] | None:
        resp = self._client.get(self._value_url)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def close(self) -> None:
        self._client.close()


def mirror_from_env() -> SnapshotMirror | None:
    """Cloudflare KV when its three settings are present, else Upstash, else none."""
    if config.CF_ACCOUNT_ID and config.CF_KV_NAMESPACE_ID and config.CF_API_TOKEN:
        logger.info("[mirror] Cloudflare KV mirror enabled (%s).", config.MIRROR_KEY)
        return CloudflareKVMirror(
            config.CF_ACCOUNT_ID, config.CF_KV_NAMESPACE_ID, config.CF_API_TOKEN
        )
    if config.UPSTASH_REDIS_REST_URL and config.UPSTASH_REDIS_REST_TOKEN:
        logger.info("[mirror] Upstash mirror enabled (%s).", config.MIRROR_KEY)
        return UpstashMirror(config.UPSTASH_REDIS_REST_URL, config.UPSTASH_REDIS_REST_TOKEN)
    return None
