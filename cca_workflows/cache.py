"""
On-disk key/value cache with TTL expiry and atomic writes.

Each entry is one file named by its key inside the cache directory. The
file's mtime is the only validity signal; there is no embedded expiry
metadata. Writes go through a temp file in the same directory followed by
os.replace(), so concurrent readers never observe a partial entry and the
last writer wins.
"""

import hashlib
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Optional, Union

from .errors import CacheIOError, InvalidInput
from .types import CacheStats
from .utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)

DEFAULT_MODE = 0o700
TEMP_SUFFIX = ".tmp"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")
_READ_CHUNK = 1024 * 1024


def _reject_traversal(value: Union[str, Path], what: str) -> None:
    """Raise InvalidInput for empty values and relative paths that use '..'."""
    text = str(value)
    if not text:
        raise InvalidInput(f"{what} must not be empty")
    if not os.path.isabs(text) and ".." in re.split(r"[\\/]", text):
        raise InvalidInput(f"Path traversal detected in {what}: {text}")


def string_cache_key(text: str) -> str:
    """SHA-256 hex digest of an arbitrary string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def file_digest(path: Union[str, Path]) -> str:
    """SHA-256 hex digest of a file's content."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def file_cache_key(path: Union[str, Path], context: str = "") -> str:
    """
    Key for a file that changes whenever its content or mtime changes.

    Combines the canonical absolute path (so same-named files in different
    directories never collide), the content digest, the modification time
    and a caller-supplied context string.

    Raises:
        InvalidInput: empty path or relative path containing '..'
        CacheIOError: the file cannot be read
    """
    _reject_traversal(path, "cache key path")
    try:
        abs_path = Path(path).resolve()
        content_hash = file_digest(abs_path)
        mtime_ns = abs_path.stat().st_mtime_ns
    except OSError as exc:
        raise CacheIOError(f"Cannot read {path} for cache key: {exc}") from exc
    return string_cache_key(f"{abs_path}:{content_hash}:{mtime_ns}:{context}")


def cache_key(identifier: str, context: str = "") -> str:
    """
    Deterministic cache key for a file path or a freeform string.

    Existing regular files get a content/mtime-aware key; anything else is
    hashed as a string (with the context appended when given).

    Raises:
        InvalidInput: empty identifier or relative path containing '..'
    """
    _reject_traversal(identifier, "cache key")
    if os.path.isfile(identifier):
        return file_cache_key(identifier, context)
    return string_cache_key(f"{identifier}:{context}" if context else identifier)


class CacheStore:
    """
    File-per-key cache confined to one directory.

    Usage:
        store = CacheStore("/tmp/github-api-cache", ttl=300)
        store.init()
        key = cache_key("api_rate_limit")
        payload = store.get(key)
        if payload is None:
            payload = fetch()
            store.put(key, payload)
    """

    def __init__(
        self,
        directory: Union[str, Path],
        ttl: int = 300,
        mode: int = DEFAULT_MODE,
        name: str = "cache",
        metrics: Optional[MetricsCollector] = None,
    ):
        _reject_traversal(directory, "cache directory")
        self.directory = Path(directory)
        self.ttl = _validate_ttl(ttl)
        self.mode = mode
        self.name = name
        self._metrics = metrics

    def init(self) -> "CacheStore":
        """
        Create the directory (and parents) with restrictive permissions.

        Raises:
            CacheIOError: if the directory cannot be created
        """
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            os.chmod(self.directory, self.mode)
        except OSError as exc:
            raise CacheIOError(f"Cannot create cache directory {self.directory}: {exc}") from exc
        logger.debug(f"Cache '{self.name}' ready at {self.directory}")
        return self

    def path_for(self, key: str) -> Path:
        if not key or not _KEY_PATTERN.match(key):
            raise InvalidInput(f"Invalid cache key: {key!r}")
        return self.directory / key

    def is_valid(self, key: str, ttl: Optional[float] = None) -> bool:
        """True if the entry exists and is younger than ttl."""
        ttl = self.ttl if ttl is None else _validate_ttl(ttl)
        try:
            mtime = self.path_for(key).stat().st_mtime
        except FileNotFoundError:
            return False
        return time.time() - mtime < ttl

    def get(self, key: str, ttl: Optional[float] = None, binary: bool = False) -> Optional[Union[str, bytes]]:
        """
        Return the stored payload, or None on a miss or expired entry.

        Args:
            key: Cache key
            ttl: Maximum age in seconds (defaults to the store's ttl)
            binary: Return bytes instead of decoded text

        An entry that is not valid UTF-8 is a miss unless binary is set.
        """
        path = self.path_for(key)
        payload: Optional[Union[str, bytes]] = None
        if self.is_valid(key, ttl):
            try:
                payload = path.read_bytes()
            except FileNotFoundError:
                # Swept between the stat and the read
                payload = None
        if payload is not None and not binary:
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning(f"Cache entry {key} is not UTF-8 text, treating as a miss")
                payload = None

        if self._metrics:
            self._metrics.record_cache_operation("hit" if payload is not None else "miss", self.name)
        return payload

    def put(self, key: str, payload: Union[str, bytes]) -> Path:
        """
        Atomically store a payload.

        Raises:
            CacheIOError: the temp file could not be written or renamed
        """
        path = self.path_for(key)
        data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)

        tmp_path = None
        try:
            tmp_fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=TEMP_SUFFIX)
            with os.fdopen(tmp_fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise CacheIOError(f"Cannot write cache entry {key}: {exc}") from exc
        return path

    def delete(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        try:
            self.path_for(key).unlink()
            return True
        except FileNotFoundError:
            return False

    def sweep(self, ttl: Optional[float] = None) -> int:
        """
        Delete entries (and leftover temp files) older than ttl.

        Raises:
            InvalidInput: ttl is not a positive number

        Returns:
            Number of files removed
        """
        ttl = self.ttl if ttl is None else _validate_ttl(ttl)
        now = time.time()
        removed = 0
        for entry in self._iter_files(include_temp=True):
            try:
                if now - entry.stat().st_mtime > ttl:
                    entry.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        if removed:
            logger.debug(f"Swept {removed} expired entries from cache '{self.name}'")
        return removed

    def flush(self) -> int:
        """Delete every entry. Returns the number removed."""
        removed = 0
        for entry in self._iter_files(include_temp=True):
            try:
                entry.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        logger.info(f"Flushed {removed} entries from cache '{self.name}'")
        return removed

    def stats(self) -> CacheStats:
        stats = CacheStats(directory=self.directory)
        for entry in self._iter_files(include_temp=False):
            try:
                stats.total_bytes += entry.stat().st_size
            except FileNotFoundError:
                continue
            stats.entries += 1
        return stats

    def _iter_files(self, include_temp: bool):
        if not self.directory.is_dir():
            return
        for entry in self.directory.iterdir():
            if not entry.is_file():
                continue
            if entry.name.startswith("."):
                if include_temp and entry.name.endswith(TEMP_SUFFIX):
                    yield entry
                continue
            yield entry


def _validate_ttl(ttl) -> float:
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        raise InvalidInput(f"Invalid cache TTL: {ttl!r}")
    if ttl <= 0:
        raise InvalidInput(f"Cache TTL must be positive, got {ttl}")
    return ttl
