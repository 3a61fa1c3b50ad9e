from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Protocol


class CompletionMarker(Protocol):
    """Answer whether a destination has already been produced."""

    def exists(self) -> bool:
        ...


def is_non_empty_file(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


@dataclass(frozen=True)
class FileNonEmptyMarker:
    path: Path

    def exists(self) -> bool:
        return is_non_empty_file(self.path)


@dataclass(frozen=True)
class AbsentMarker:
    """Complete while ``path`` does not exist, e.g. an in-progress flag."""

    path: Path

    def exists(self) -> bool:
        return not self.path.exists()


@dataclass(frozen=True)
class ExecutableMarker:
    path: Path

    def exists(self) -> bool:
        return self.path.is_file() and os.access(self.path, os.X_OK)


@dataclass(frozen=True)
class SiblingEntriesMarker:
    """Complete when every named entry is present under ``parent``.

    Used for extracted archives, where a couple of known top-level
    directories stand in for the whole tree.
    """

    parent: Path
    entries: tuple[str, ...]

    def exists(self) -> bool:
        if not self.entries:
            return False
        return all((self.parent / name).is_dir() for name in self.entries)


@dataclass(frozen=True)
class AllOf:
    markers: tuple[CompletionMarker, ...]

    def exists(self) -> bool:
        return bool(self.markers) and all(m.exists() for m in self.markers)


def all_of(markers: Iterable[CompletionMarker]) -> AllOf:
    return AllOf(markers=tuple(markers))


@dataclass
class InMemoryMarkers:
    """Keyed completion state for tests.

    ``marker(key)`` returns a probe bound to the key; ``complete(key)``
    flips it.
    """

    done: set[str] = field(default_factory=set)

    def complete(self, key: str) -> None:
        self.done.add(key)

    def exists(self, key: str) -> bool:
        return key in self.done

    def marker(self, key: str) -> "_KeyMarker":
        return _KeyMarker(self, key)


@dataclass(frozen=True)
class _KeyMarker:
    store: InMemoryMarkers
    key: str

    def exists(self) -> bool:
        return self.store.exists(self.key)
