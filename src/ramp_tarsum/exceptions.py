"""Exception hierarchy for the TarSum digest engine."""

from __future__ import annotations


class TarsumError(Exception):
    """Base exception for digest engine errors.

    Carries the stage the session was in and how many bytes it had
    consumed when the error was raised, for diagnostics.
    """

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        bytes_consumed: int | None = None,
    ):
        self.stage = stage
        self.bytes_consumed = bytes_consumed
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.stage is None and self.bytes_consumed is None:
            return message
        return f"{message} (stage={self.stage}, bytes_consumed={self.bytes_consumed})"


class UnsupportedPolicyVersion(TarsumError, ValueError):
    """Unknown canonicalization policy version requested."""

    def __init__(self, version: object):
        self.version = version
        super().__init__(f"Unsupported TarSum policy version: {version!r}")


class MalformedArchive(TarsumError):
    """Archive bytes could not be decoded as a tar entry header."""


class TruncatedArchive(TarsumError):
    """End of input reached before the archive terminator marker."""


class CorruptState(TarsumError):
    """Checkpoint state could not be restored."""


class DigestNotFinished(TarsumError):
    """Aggregate requested before the archive terminator was seen."""
