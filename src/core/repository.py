"""
Copy-on-Write Registries
========================
String-keyed registries for rail lines and facilities, kept apart from the
geometry so the backing store can change without touching the Projector or
the FacilityIndex.

Concurrency model:
- Readers grab the current immutable snapshot once per call, without locking.
- Writers copy the current mapping, mutate the copy and publish it under a
  single exclusive lock held only for the copy-and-swap.
- A reader therefore never observes a half-applied mutation.
"""

import threading
from types import MappingProxyType
from typing import Dict, Generic, List, Mapping, Optional, Protocol, TypeVar

T = TypeVar("T")


class Repository(Protocol[T]):
    """Store interface used by the engine registries."""

    def get(self, key: str) -> Optional[T]: ...

    def list(self) -> List[T]: ...

    def put(self, key: str, value: T) -> None: ...

    def delete(self, key: str) -> bool: ...

    def insert_new(self, key: str, value: T) -> bool: ...

    def insert_all(self, values: Mapping[str, T]) -> List[str]: ...

    def replace_existing(self, key: str, value: T) -> bool: ...

    def snapshot(self) -> Mapping[str, T]: ...

    def __len__(self) -> int: ...


class SnapshotRepository(Generic[T]):
    """
    In-memory repository publishing immutable snapshots.

    Usage:
        repo = SnapshotRepository()
        repo.put("LINE_A", line)
        view = repo.snapshot()  # stable for the whole read
    """

    def __init__(self, initial: Optional[Mapping[str, T]] = None) -> None:
        self._lock = threading.Lock()
        self._snapshot: Mapping[str, T] = MappingProxyType(dict(initial or {}))

    def snapshot(self) -> Mapping[str, T]:
        """Current read-only view; later writes never alter it."""
        return self._snapshot

    def get(self, key: str) -> Optional[T]:
        return self._snapshot.get(key)

    def list(self) -> List[T]:
        """Values ordered by key."""
        view = self._snapshot
        return [view[key] for key in sorted(view)]

    def put(self, key: str, value: T) -> None:
        with self._lock:
            updated: Dict[str, T] = dict(self._snapshot)
            updated[key] = value
            self._snapshot = MappingProxyType(updated)

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._snapshot:
                return False
            updated = dict(self._snapshot)
            del updated[key]
            self._snapshot = MappingProxyType(updated)
            return True

    def insert_new(self, key: str, value: T) -> bool:
        """Publish value only if key is absent. Returns False on collision."""
        with self._lock:
            if key in self._snapshot:
                return False
            updated = dict(self._snapshot)
            updated[key] = value
            self._snapshot = MappingProxyType(updated)
            return True

    def insert_all(self, values: Mapping[str, T]) -> List[str]:
        """
        Publish every value in one swap, or none of them.

        Returns:
            Keys already present, sorted. Nothing is published unless empty.
        """
        with self._lock:
            collisions = sorted(key for key in values if key in self._snapshot)
            if collisions:
                return collisions
            updated = dict(self._snapshot)
            updated.update(values)
            self._snapshot = MappingProxyType(updated)
            return []

    def replace_existing(self, key: str, value: T) -> bool:
        """Publish value only if key is present. Returns False when absent."""
        with self._lock:
            if key not in self._snapshot:
                return False
            updated = dict(self._snapshot)
            updated[key] = value
            self._snapshot = MappingProxyType(updated)
            return True

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, key: object) -> bool:
        return key in self._snapshot
