# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/store/lookup.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Generic, List, Optional, Protocol, Type, TypeVar

from ..api.models import (
    Cluster,
    ControlPlane,
    Deployment,
    KubeObject,
    Machine,
    Secret,
    ServiceAccount,
)
from .memory import ObjectStore

T = TypeVar("T", bound=KubeObject)


class Lookup(Protocol[T]):
    def get(self, namespace: str, name: str) -> T: ...

    def list(self, namespace: Optional[str] = None, selector: Optional[Dict[str, str]] = None) -> List[T]: ...


class StoreLookup(Generic[T]):
    """Read-only view of one kind in an ObjectStore. get() raises NotFoundError."""

    def __init__(self, store: ObjectStore, kind: Type[T]):
        self.store = store
        self.kind = kind

    def get(self, namespace: str, name: str) -> T:
        return self.store.get(self.kind, namespace, name)

    def list(self, namespace: Optional[str] = None, selector: Optional[Dict[str, str]] = None) -> List[T]:
        return self.store.list(self.kind, namespace, selector)


@dataclass(frozen=True)
class Lookups:
    machines: Lookup[Machine]
    clusters: Lookup[Cluster]
    control_planes: Lookup[ControlPlane]
    deployments: Lookup[Deployment]
    secrets: Lookup[Secret]
    service_accounts: Lookup[ServiceAccount]

    @classmethod
    def from_store(cls, store: ObjectStore) -> "Lookups":
        return cls(
            machines=StoreLookup(store, Machine),
            clusters=StoreLookup(store, Cluster),
            control_planes=StoreLookup(store, ControlPlane),
            deployments=StoreLookup(store, Deployment),
            secrets=StoreLookup(store, Secret),
            service_accounts=StoreLookup(store, ServiceAccount),
        )
