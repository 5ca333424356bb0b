#!/usr/bin/env python3
"""
Remote Cache Client: HTTP access to a shared cache service

Same contract as SQLiteCacheBackend, but the store lives behind an HTTP API
shared by every process (and every other tenant) pointed at it.

Implements:
- get(key)               GET    /v1/entries/{key}         (404 → None)
- get_all(keys)          POST   /v1/entries:batchGet
- put(key, value, ttl)   PUT    /v1/entries/{key}
- put_all(mapping, ttl)  POST   /v1/entries:batchPut      (atomic on the server)
- remove(key)            DELETE /v1/entries/{key}
- remove_all(keys)       POST   /v1/entries:batchDelete

Errors are raised, not swallowed: callers decide whether to retry.
"""

import logging
import os
from typing import Any, Dict, Iterable, Optional
from urllib.parse import quote

import requests

from .backend import MAX_VALUE_BYTES, check_value
from .errors import BackendError, ValueTooLargeError

logger = logging.getLogger(__name__)


class RemoteCacheBackend:
    """
    HTTP cache service client.

    Auth: Bearer token from WEBSTORAGE_CACHE_TOKEN env var or constructor arg.
    """

    DEFAULT_TIMEOUT = 10
    API_PREFIX = "/v1"

    def __init__(
        self,
        base_url: str,
        api_token: str = None,
        timeout: int = None,
        max_value_bytes: int = MAX_VALUE_BYTES,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token or os.environ.get("WEBSTORAGE_CACHE_TOKEN")
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.max_value_bytes = max_value_bytes

        self._request_count = 0
        self._error_count = 0

        logger.info(
            f"RemoteCacheBackend initialized for {self.base_url} "
            f"(token={'configured' if self.api_token else 'missing'})"
        )

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}{self.API_PREFIX}{path}"

    def _entry_path(self, key: str) -> str:
        return f"/entries/{quote(key, safe='')}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Make an authenticated request. Raises BackendError on any failure."""
        self._request_count += 1
        try:
            resp = requests.request(
                method, self._url(path),
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.Timeout as e:
            self._error_count += 1
            logger.error(f"Cache service timeout: {method} {path}")
            raise BackendError(f"cache service timeout: {method} {path}") from e
        except requests.RequestException as e:
            self._error_count += 1
            logger.error(f"Cache service connection error: {method} {path}: {e}")
            raise BackendError(f"cache service unreachable: {method} {path}") from e
        return resp

    def _fail(self, resp: requests.Response, method: str, path: str) -> BackendError:
        self._error_count += 1
        logger.warning(
            f"Cache service error: {method} {path} -> "
            f"{resp.status_code} {resp.text[:300]}"
        )
        return BackendError(f"cache service returned {resp.status_code} for {method} {path}")

    def _json(self, resp: requests.Response, method: str, path: str) -> Dict[str, Any]:
        try:
            return resp.json()
        except ValueError as e:
            self._error_count += 1
            raise BackendError(f"invalid JSON from cache service: {method} {path}") from e

    # ── Reads ────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[str]:
        path = self._entry_path(key)
        resp = self._request("GET", path)
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise self._fail(resp, "GET", path)
        return self._json(resp, "GET", path).get("value")

    def get_all(self, keys: Iterable[str]) -> Dict[str, str]:
        keys = list(dict.fromkeys(keys))
        if not keys:
            return {}
        path = "/entries:batchGet"
        resp = self._request("POST", path, json={"keys": keys})
        if resp.status_code >= 400:
            raise self._fail(resp, "POST", path)
        entries = self._json(resp, "POST", path).get("entries") or {}
        return {k: v for k, v in entries.items() if v is not None}

    # ── Writes ───────────────────────────────────────────────────

    def put(self, key: str, value: str, ttl: int) -> None:
        check_value(key, value, self.max_value_bytes)
        path = self._entry_path(key)
        resp = self._request("PUT", path, json={"value": value, "ttl": int(ttl)})
        if resp.status_code == 413:
            self._error_count += 1
            raise ValueTooLargeError(key, len(value.encode("utf-8")), self.max_value_bytes)
        if resp.status_code >= 400:
            raise self._fail(resp, "PUT", path)

    def put_all(self, mapping: Dict[str, str], ttl: int) -> None:
        if not mapping:
            return
        for key, value in mapping.items():
            check_value(key, value, self.max_value_bytes)
        path = "/entries:batchPut"
        resp = self._request("POST", path, json={"entries": dict(mapping), "ttl": int(ttl)})
        if resp.status_code == 413:
            self._error_count += 1
            largest = max(mapping, key=lambda k: len(mapping[k].encode("utf-8")))
            raise ValueTooLargeError(
                largest, len(mapping[largest].encode("utf-8")), self.max_value_bytes
            )
        if resp.status_code >= 400:
            raise self._fail(resp, "POST", path)

    def remove(self, key: str) -> None:
        path = self._entry_path(key)
        resp = self._request("DELETE", path)
        # Removing an absent key is not an error
        if resp.status_code >= 400 and resp.status_code != 404:
            raise self._fail(resp, "DELETE", path)

    def remove_all(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        path = "/entries:batchDelete"
        resp = self._request("POST", path, json={"keys": keys})
        if resp.status_code >= 400:
            raise self._fail(resp, "POST", path)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "base_url": self.base_url,
            "requests": self._request_count,
            "errors": self._error_count,
        }
