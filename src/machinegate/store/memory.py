# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/store/memory.py
from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple, Type, TypeVar

from ..api.models import KubeObject
from .errors import AlreadyExistsError, ConflictError, NotFoundError

log = logging.getLogger("machinegate")

T = TypeVar("T", bound=KubeObject)

StoreKey = Tuple[str, str, str]
Watcher = Callable[[str, KubeObject], None]

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


def _key(obj: KubeObject) -> StoreKey:
    return obj.KIND, obj.metadata.namespace, obj.metadata.name


def matches_selector(obj: KubeObject, selector: Optional[Dict[str, str]]) -> bool:
    if not selector:
        return True
    labels = obj.metadata.labels or {}
    return all(labels.get(k) == v for k, v in selector.items())


class ObjectStore:
    """
    Thread-safe in-memory record store with optimistic concurrency.

    Objects live in a single arena keyed by (kind, namespace, name). A second
    index maps every owner uid to the keys of its dependents, which drives
    cascading deletion. Deleting an object that still carries finalizers only
    stamps deletion_timestamp; the record goes away once the last finalizer is
    removed through update().

    Every read returns a deep copy, so callers mutate freely and write back.
    Watchers are called after the lock is released with (event_type, object).
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._objects: Dict[StoreKey, KubeObject] = {}
        self._dependents: Dict[str, Set[StoreKey]] = defaultdict(set)
        self._watchers: List[Watcher] = []

    # -------------------------------------------------------------------------
    # Watch
    # -------------------------------------------------------------------------

    def watch(self, fn: Watcher) -> None:
        with self._lock:
            self._watchers.append(fn)

    def _notify(self, events: List[Tuple[str, KubeObject]]) -> None:
        for event_type, obj in events:
            for fn in list(self._watchers):
                fn(event_type, copy.deepcopy(obj))

    # -------------------------------------------------------------------------
    # Owner index
    # -------------------------------------------------------------------------

    def _index(self, key: StoreKey, obj: KubeObject) -> None:
        for ref in obj.metadata.owner_references:
            self._dependents[ref.uid].add(key)

    def _unindex(self, key: StoreKey, obj: KubeObject) -> None:
        for ref in obj.metadata.owner_references:
            deps = self._dependents.get(ref.uid)
            if deps is None:
                continue
            deps.discard(key)
            if not deps:
                del self._dependents[ref.uid]

    def dependents(self, owner: KubeObject) -> List[KubeObject]:
        """Objects carrying an owner reference to *owner*."""
        with self._lock:
            keys = sorted(self._dependents.get(owner.metadata.uid, ()))
            return [copy.deepcopy(self._objects[k]) for k in keys if k in self._objects]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, kind: Type[T], namespace: str, name: str) -> T:
        with self._lock:
            obj = self._objects.get((kind.KIND, namespace, name))
            if obj is None:
                raise NotFoundError(kind.KIND, namespace, name)
            return copy.deepcopy(obj)

    def list(
        self,
        kind: Type[T],
        namespace: Optional[str] = None,
        selector: Optional[Dict[str, str]] = None,
    ) -> List[T]:
        with self._lock:
            out = [
                copy.deepcopy(obj)
                for (k, ns, _), obj in sorted(self._objects.items(), key=lambda kv: kv[0])
                if k == kind.KIND and (namespace is None or ns == namespace) and matches_selector(obj, selector)
            ]
        return out

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, obj: T) -> T:
        key = _key(obj)
        with self._lock:
            if key in self._objects:
                raise AlreadyExistsError(f"{key[0]} {key[1]}/{key[2]} already exists")
            stored = copy.deepcopy(obj)
            stored.metadata.uid = stored.metadata.uid or str(uuid.uuid4())
            stored.metadata.resource_version = 1
            stored.metadata.deletion_timestamp = None
            self._objects[key] = stored
            self._index(key, stored)
            out = copy.deepcopy(stored)
        log.debug("[store] created %s %s/%s", key[0], key[1], key[2])
        self._notify([(ADDED, out)])
        return out

    def update(self, obj: T) -> T:
        events: List[Tuple[str, KubeObject]] = []
        key = _key(obj)
        with self._lock:
            live = self._check_version(key, obj)
            stored = copy.deepcopy(obj)
            stored.metadata.uid = live.metadata.uid
            # deletion is only ever started through delete()
            stored.metadata.deletion_timestamp = live.metadata.deletion_timestamp
            stored.metadata.resource_version = live.metadata.resource_version + 1
            self._unindex(key, live)
            self._objects[key] = stored
            self._index(key, stored)
            out = copy.deepcopy(stored)
            if stored.deleting and not stored.metadata.finalizers:
                self._purge(key, events)
            else:
                events.append((MODIFIED, out))
        self._notify(events)
        return out

    def update_status(self, obj: T) -> T:
        """Write only the status of *obj*; spec and metadata stay as stored."""
        key = _key(obj)
        with self._lock:
            live = self._check_version(key, obj)
            stored = copy.deepcopy(live)
            stored.status = copy.deepcopy(obj.status)
            stored.metadata.resource_version = live.metadata.resource_version + 1
            self._objects[key] = stored
            out = copy.deepcopy(stored)
        self._notify([(MODIFIED, out)])
        return out

    def delete(self, kind: Type[KubeObject], namespace: str, name: str) -> None:
        events: List[Tuple[str, KubeObject]] = []
        key = (kind.KIND, namespace, name)
        with self._lock:
            live = self._objects.get(key)
            if live is None:
                raise NotFoundError(kind.KIND, namespace, name)
            if live.metadata.finalizers:
                if not live.deleting:
                    live.metadata.deletion_timestamp = datetime.now(timezone.utc)
                    live.metadata.resource_version += 1
                    events.append((MODIFIED, copy.deepcopy(live)))
            else:
                self._purge(key, events)
        self._notify(events)

    def _check_version(self, key: StoreKey, obj: KubeObject) -> KubeObject:
        live = self._objects.get(key)
        if live is None:
            raise NotFoundError(*key)
        if obj.metadata.resource_version != live.metadata.resource_version:
            raise ConflictError(
                f"{key[0]} {key[1]}/{key[2]}: resource_version {obj.metadata.resource_version} "
                f"is stale (live {live.metadata.resource_version})"
            )
        return live

    def _uid_exists(self, uid: str) -> bool:
        return any(o.metadata.uid == uid for o in self._objects.values())

    def _purge(self, key: StoreKey, events: List[Tuple[str, KubeObject]]) -> None:
        live = self._objects.pop(key, None)
        if live is None:
            return
        self._unindex(key, live)
        events.append((DELETED, copy.deepcopy(live)))
        log.debug("[store] deleted %s %s/%s", key[0], key[1], key[2])

        # Cascade to dependents (background GC semantics)
        for dep_key in sorted(self._dependents.pop(live.metadata.uid, set())):
            dep = self._objects.get(dep_key)
            if dep is None:
                continue
            if any(ref.uid != live.metadata.uid and self._uid_exists(ref.uid) for ref in dep.metadata.owner_references):
                continue
            if dep.metadata.finalizers:
                if not dep.deleting:
                    dep.metadata.deletion_timestamp = datetime.now(timezone.utc)
                    dep.metadata.resource_version += 1
                    events.append((MODIFIED, copy.deepcopy(dep)))
                continue
            self._purge(dep_key, events)
