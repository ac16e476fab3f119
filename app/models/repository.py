"""
Repository layer — CRUD by id with optimistic versioning.

The lending core only depends on the Repository interface; InMemoryRepository
is the id-indexed store used by the service wiring and the tests. A database
backed implementation must honour the same contract:

  - ids are unique (add() of an existing id raises)
  - get() returns a detached copy; mutating it changes nothing until update()
  - update() commits only if the stored version equals entity.version,
    then bumps the version
  - find() preserves insertion order (stable monitoring order)
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

from app.core.errors import NotFoundError, StateConflictError, VersionConflictError

T = TypeVar("T", bound=BaseModel)


class Repository(ABC, Generic[T]):
    """Abstract CRUD-by-id store."""

    entity_name: str = "Entity"

    @abstractmethod
    def add(self, entity: T) -> T:
        ...

    @abstractmethod
    def get(self, entity_id: str) -> Optional[T]:
        ...

    @abstractmethod
    def update(self, entity: T) -> T:
        ...

    @abstractmethod
    def find(self, predicate: Optional[Callable[[T], bool]] = None) -> list[T]:
        ...

    def require(self, entity_id: str) -> T:
        entity = self.get(entity_id)
        if entity is None:
            raise NotFoundError(self.entity_name, entity_id)
        return entity

    def list_by_status(self, status) -> list[T]:
        return self.find(lambda e: getattr(e, "status", None) == status)


class InMemoryRepository(Repository[T]):
    """Id-indexed store backed by an insertion-ordered dict."""

    def __init__(self, entity_name: str = "Entity"):
        self.entity_name = entity_name
        self._items: dict[str, T] = {}
        self._lock = threading.Lock()

    def add(self, entity: T) -> T:
        with self._lock:
            if entity.id in self._items:
                raise StateConflictError(f"{self.entity_name} '{entity.id}' already exists")
            self._items[entity.id] = entity.model_copy(deep=True)
        return entity.model_copy(deep=True)

    def get(self, entity_id: str) -> Optional[T]:
        with self._lock:
            stored = self._items.get(entity_id)
            return stored.model_copy(deep=True) if stored is not None else None

    def update(self, entity: T) -> T:
        with self._lock:
            stored = self._items.get(entity.id)
            if stored is None:
                raise NotFoundError(self.entity_name, entity.id)
            if stored.version != entity.version:
                raise VersionConflictError(self.entity_name, entity.id, entity.version, stored.version)
            committed = entity.model_copy(update={"version": entity.version + 1}, deep=True)
            self._items[entity.id] = committed
            return committed.model_copy(deep=True)

    def find(self, predicate: Optional[Callable[[T], bool]] = None) -> list[T]:
        with self._lock:
            items = list(self._items.values())
        return [i.model_copy(deep=True) for i in items if predicate is None or predicate(i)]

    def __len__(self) -> int:
        return len(self._items)


class KeyedLocks:
    """
    One re-entrant lock per key.

    Payments and liquidations take the loan's lock for the whole
    read → transfer → commit sequence, so only one writer touches a loan at a time.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.RLock())
        with lock:
            yield
