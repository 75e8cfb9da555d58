"""Build-cache glue around the TarSum digest engine."""

from ramp_cli.archive import ArchiveError, digest_archive, digest_path, write_tar
from ramp_cli.cache import BuildCache, CacheError, cache_key
from ramp_cli.config import ConfigError, DockrampConfig, load_config, save_config
from ramp_cli.probe import CacheProbe

__all__ = [
    "ArchiveError",
    "digest_archive",
    "digest_path",
    "write_tar",
    "BuildCache",
    "CacheError",
    "cache_key",
    "ConfigError",
    "DockrampConfig",
    "load_config",
    "save_config",
    "CacheProbe",
]
