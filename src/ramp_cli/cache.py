"""Local build cache: a JSON map from cache key to committed image id.

The cache key of a build step is the SHA-256 of the parent image id followed
by every instruction recorded since the last commit. COPY and EXTRACT steps
record the TarSum of their source, so unchanged inputs hit the cache without
being uploaded.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Iterator, Optional

logger = logging.getLogger(__name__)


class CacheError(RuntimeError):
    """Raised when the cache file cannot be read or written."""


def cache_key(image_id: str, commands: Iterable[str]) -> str:
    """Compute the cache key for pending commands on top of ``image_id``.

    Examples:
        >>> key = cache_key("sha256:abc", ["RUN input: \\"make\\""])
        >>> len(key)
        64
        >>> cache_key("sha256:abc", []) == hashlib.sha256(b"sha256:abc").hexdigest()
        True
    """
    hasher = hashlib.sha256()
    hasher.update(image_id.encode("utf-8"))
    for command in commands:
        hasher.update(command.encode("utf-8"))
    return hasher.hexdigest()


class BuildCache:
    """Key-value store persisted as a JSON object.

    Loads lazily on first access; every ``set``/``remove``/``clear``
    persists immediately.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._entries: Optional[dict[str, str]] = None

    def load(self) -> dict[str, str]:
        """(Re)load the cache file. A missing file is an empty cache."""
        if not self.path.exists():
            self._entries = {}
            return self._entries

        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except OSError as exc:
            raise CacheError(f"Unable to open cache file {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise CacheError(f"Unable to decode build cache {self.path}: {exc}") from exc

        if not isinstance(payload, dict):
            raise CacheError(f"Invalid build cache format in {self.path}")

        self._entries = {
            str(key): str(value)
            for key, value in payload.items()
            if isinstance(key, str) and isinstance(value, str)
        }
        logger.debug("loaded %d cache entries from %s", len(self._entries), self.path)
        return self._entries

    @property
    def entries(self) -> dict[str, str]:
        return self._entries if self._entries is not None else self.load()

    def save(self) -> None:
        """Write the cache file atomically with owner-only permissions."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(self.entries, handle, sort_keys=True)
                    handle.write("\n")
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise CacheError(f"Unable to write cache file {self.path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        return self.entries.get(key)

    def set(self, key: str, image_id: str) -> None:
        self.entries[key] = image_id
        self.save()

    def remove(self, key: str) -> bool:
        if key not in self.entries:
            return False
        del self.entries[key]
        self.save()
        return True

    def clear(self) -> None:
        self.entries.clear()
        self.save()

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(sorted(self.entries.items()))

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: object) -> bool:
        return key in self.entries
