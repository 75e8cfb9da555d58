"""Cache probing at the build orchestrator boundary.

The orchestrator records every instruction applied since the last committed
image. Before an expensive step it asks the probe whether a cached image
already exists for "current image + pending instructions". For COPY and
EXTRACT steps the pending instruction carries the TarSum of the source, so
only the digest has to be computed locally.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

from ramp_tarsum import TarsumError, Version

from .archive import ArchiveError, digest_archive, digest_path
from .cache import BuildCache, cache_key

logger = logging.getLogger(__name__)

ImageExists = Callable[[str], bool]


class CacheProbe:
    """Tracks pending build commands and probes the build cache.

    Args:
        cache: Cache store
        image_id: Id of the current (last committed) image
        image_exists: Callback confirming a cached image still exists on
            the daemon; cached ids of deleted images are treated as misses
        context_dir: Build context directory that COPY/EXTRACT sources
            are relative to
        version: TarSum policy version for source digests
        exclude: Patterns excluded when archiving COPY sources
    """

    def __init__(
        self,
        cache: BuildCache,
        image_id: str = "",
        image_exists: Optional[ImageExists] = None,
        context_dir: Path = Path("."),
        version: object = Version.V1,
        exclude: Iterable[str] = (),
    ):
        self.cache = cache
        self.image_id = image_id
        self.image_exists = image_exists or (lambda _image_id: True)
        self.context_dir = Path(context_dir)
        self.version = version
        self.exclude = list(exclude)
        self.pending_commands: list[str] = []

    def add_command(self, command: str) -> None:
        self.pending_commands.append(command)

    def cache_key(self) -> str:
        return cache_key(self.image_id, self.pending_commands)

    def probe(self) -> bool:
        """Adopt a cached image for the pending commands, if one exists."""
        image_id = self.cache.get(self.cache_key())
        if image_id is None:
            return False
        if not self.image_exists(image_id):
            logger.debug("cached image %s no longer exists", image_id)
            return False

        self.image_id = image_id
        self.pending_commands = []
        logger.info("cache hit ---> %s", image_id)
        return True

    def commit(self, image_id: str) -> str:
        """Record ``image_id`` as the result of the pending commands."""
        key = self.cache_key()
        self.cache.set(key, image_id)
        self.image_id = image_id
        self.pending_commands = []
        return key

    def check_copy_cache(self, src: str) -> bool:
        """Record the digest of a COPY source and probe the cache.

        Archive or digest failures count as a miss; the copy itself will
        then report the real error.
        """
        src_path = self.context_dir / src
        try:
            digest = digest_path(src_path, self.version, self.exclude)
        except (ArchiveError, TarsumError) as exc:
            logger.debug("unable to digest COPY source %s: %s", src_path, exc)
            return False

        self.add_command(f"COPY digest: {digest.hexdigest()}")
        return self.probe()

    def check_extract_cache(self, src: str) -> bool:
        """Record the digest of an EXTRACT source archive and probe the cache."""
        src_path = self.context_dir / src
        try:
            digest = digest_archive(src_path, self.version)
        except (ArchiveError, TarsumError) as exc:
            logger.debug("unable to digest EXTRACT source %s: %s", src_path, exc)
            return False

        self.add_command(f"EXTRACT digest: {digest.hexdigest()}")
        return self.probe()
