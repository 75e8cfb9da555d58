"""Per-entry digest results and their deterministic ordering."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class EntryResult:
    """Digest of one archive entry (its canonical header plus body).

    Attributes:
        name: Cleaned archive-relative name (no leading ``./`` or trailing ``/``)
        digest: Lowercase hex SHA-256 of the entry
        position: Zero-based index of the entry in the archive
    """

    name: str
    digest: str
    position: int

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "digest": self.digest, "position": self.position}


class EntryResults(List[EntryResult]):
    """List of entry results with the lookups and orderings TarSum needs."""

    def get_file(self, name: str) -> Optional[EntryResult]:
        """First result with a matching name, or None."""
        for entry in self:
            if entry.name == name:
                return entry
        return None

    def get_all_files(self, name: str) -> "EntryResults":
        return EntryResults(entry for entry in self if entry.name == name)

    def duplicate_paths(self) -> "EntryResults":
        """Every result whose name already appeared earlier in the list."""
        seen: set[str] = set()
        dups = EntryResults()
        for entry in self:
            if entry.name in seen:
                dups.append(entry)
            else:
                seen.add(entry.name)
        return dups

    def sort_by_pos(self) -> None:
        self.sort(key=lambda entry: entry.position)

    def sort_by_names(self) -> None:
        self.sort(key=lambda entry: (entry.name, entry.position))

    def sort_by_sums(self) -> None:
        self[:] = sort_by_sums(self)


def sort_by_sums(entries: Iterable[EntryResult]) -> list[EntryResult]:
    """Order entries for aggregation.

    Entries sort by ascending digest, except that entries sharing a name
    keep their archive order (ascending position) relative to each other, so
    repeated writes to one path are combined in the order they happened.
    Unrelated entries can therefore appear in any order in the archive
    without changing the aggregate.

    Examples:
        >>> a = EntryResult("a", "ff", 0)
        >>> b = EntryResult("b", "00", 1)
        >>> [e.name for e in sort_by_sums([a, b])]
        ['b', 'a']
        >>> first = EntryResult("x", "ff", 0)
        >>> second = EntryResult("x", "00", 1)
        >>> [e.digest for e in sort_by_sums([first, second])]
        ['ff', '00']
    """
    entries = list(entries)
    if not entries:
        return entries

    groups: dict[str, list[EntryResult]] = {}
    for entry in entries:
        groups.setdefault(entry.name, []).append(entry)

    # Each entry takes a slot in plain digest order; the slots owned by a
    # repeated name are then refilled with that name's entries by position.
    ordered = sorted(entries, key=lambda entry: (entry.digest, entry.position))
    by_position = {
        name: iter(sorted(group, key=lambda entry: entry.position))
        for name, group in groups.items()
        if len(group) > 1
    }
    if not by_position:
        return ordered
    return [
        next(by_position[entry.name]) if entry.name in by_position else entry
        for entry in ordered
    ]
