"""Key/value blob storage with per-key string metadata.

Provides LocalBlobStore (filesystem, one directory per store) and
RedisBlobStore (data key + metadata hash). Both expose the same
list/get/get_metadata/set/delete surface.
"""

import json
import logging
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote

import redis

from ..config import settings
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

_DATA_SUFFIX = ".blob"
_META_SUFFIX = ".meta.json"


class BlobStore(Protocol):
    """Blob store interface."""

    def set(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None: ...
    def get(self, key: str) -> bytes | None: ...
    def get_metadata(self, key: str) -> dict[str, str] | None: ...
    def delete(self, key: str) -> None: ...
    def list_keys(self) -> list[str]: ...


class LocalBlobStore:
    """Filesystem store under <base_dir>/<name>/.

    Keys are percent-encoded into file names so that "report-id/file.pdf"
    round-trips through `list_keys`.
    """

    def __init__(self, base_dir: str | Path, name: str) -> None:
        self.name = name
        self._dir = Path(base_dir) / name
        self._dir.mkdir(parents=True, exist_ok=True)
        logger.debug("Local blob store %r at %s", name, self._dir)

    def _stem(self, key: str) -> str:
        return quote(key, safe="")

    def _data_path(self, key: str) -> Path:
        return self._dir / f"{self._stem(key)}{_DATA_SUFFIX}"

    def _meta_path(self, key: str) -> Path:
        return self._dir / f"{self._stem(key)}{_META_SUFFIX}"

    def set(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        self._data_path(key).write_bytes(data)
        self._meta_path(key).write_text(json.dumps(metadata or {}, indent=2), encoding="utf-8")
        logger.debug("Blob SET %s/%s (%d bytes)", self.name, key, len(data))

    def get(self, key: str) -> bytes | None:
        path = self._data_path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def get_metadata(self, key: str) -> dict[str, str] | None:
        path = self._meta_path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Blob %s/%s has unreadable metadata", self.name, key)
            return None

    def delete(self, key: str) -> None:
        existed = False
        for path in (self._data_path(key), self._meta_path(key)):
            if path.exists():
                path.unlink()
                existed = True
        if existed:
            logger.debug("Blob DELETE %s/%s", self.name, key)

    def list_keys(self) -> list[str]:
        return sorted(
            unquote(p.name[: -len(_DATA_SUFFIX)])
            for p in self._dir.iterdir()
            if p.name.endswith(_DATA_SUFFIX)
        )


class RedisBlobStore:
    """Redis-backed store: `blob:<name>:<key>` holds bytes, `blobmeta:<name>:<key>` a hash."""

    def __init__(self, redis_url: str, name: str, client: redis.Redis | None = None) -> None:
        self.name = name
        self._client = client or redis.from_url(redis_url)
        self._data_prefix = f"blob:{name}:"
        self._meta_prefix = f"blobmeta:{name}:"

    def set(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        pipe = self._client.pipeline()
        pipe.set(self._data_prefix + key, data)
        pipe.delete(self._meta_prefix + key)
        if metadata:
            pipe.hset(self._meta_prefix + key, mapping=metadata)
        pipe.execute()

    def get(self, key: str) -> bytes | None:
        return self._client.get(self._data_prefix + key)

    def get_metadata(self, key: str) -> dict[str, str] | None:
        if not self._client.exists(self._data_prefix + key):
            return None
        raw = self._client.hgetall(self._meta_prefix + key)
        return {_decode(k): _decode(v) for k, v in raw.items()}

    def delete(self, key: str) -> None:
        self._client.delete(self._data_prefix + key, self._meta_prefix + key)

    def list_keys(self) -> list[str]:
        prefix_len = len(self._data_prefix)
        return sorted(
            _decode(k)[prefix_len:] for k in self._client.scan_iter(match=f"{self._data_prefix}*")
        )


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


def create_blob_store(name: str) -> BlobStore:
    """Factory: create the configured blob store for `name` (e.g. "reports")."""
    backend = settings.blob_backend.lower().strip()
    if backend == "local":
        return LocalBlobStore(settings.blob_dir, name)
    if backend == "redis":
        if not settings.redis_url:
            raise ConfigurationError("REDIS_URL must be set for BLOB_BACKEND=redis")
        return RedisBlobStore(settings.redis_url, name)
    raise ConfigurationError(f"Unknown BLOB_BACKEND: {settings.blob_backend!r}")
