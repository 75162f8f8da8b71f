# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/api/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Dict, List, Optional

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

from .constants import (
    BOOTSTRAP_API_VERSION,
    BOOTSTRAP_KIND,
    CAPI_API_VERSION,
    CLUSTER_KIND,
    CONTROL_PLANE_KIND,
    MACHINE_KIND,
)


# ---------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------
@dataclass
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: bool = False
    block_owner_deletion: bool = False


@dataclass
class ObjectMeta:
    name: str
    namespace: str = ""
    uid: str = ""
    resource_version: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    owner_references: List[OwnerReference] = field(default_factory=list)
    finalizers: List[str] = field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None


@dataclass
class ObjectReference:
    kind: str
    name: str
    namespace: str = ""
    api_version: str = ""


@dataclass
class EnvVar:
    name: str
    value: str = ""


class KubeObject:
    """Mixin giving every stored record a kind and a (namespace, name) key."""

    KIND: ClassVar[str] = ""
    API_VERSION: ClassVar[str] = "v1"

    # Manifests use camelCase keys; nested dataclasses inherit this config
    __pydantic_config__ = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    metadata: ObjectMeta

    @property
    def key(self) -> tuple[str, str]:
        return self.metadata.namespace, self.metadata.name

    @property
    def deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None


# ---------------------------------------------------------------------
# Bootstrap request
# ---------------------------------------------------------------------
@dataclass
class BootstrapSpec:
    cluster_name: str = ""


@dataclass
class BootstrapStatus:
    ready: bool = False
    data_secret_name: Optional[str] = None


@dataclass
class BootstrapRequest(KubeObject):
    KIND: ClassVar[str] = BOOTSTRAP_KIND
    API_VERSION: ClassVar[str] = BOOTSTRAP_API_VERSION

    metadata: ObjectMeta
    spec: BootstrapSpec = field(default_factory=BootstrapSpec)
    status: BootstrapStatus = field(default_factory=BootstrapStatus)


# ---------------------------------------------------------------------
# Cluster API objects
# ---------------------------------------------------------------------
@dataclass
class MachineBootstrapRef:
    config_ref: Optional[ObjectReference] = None
    data_secret_name: Optional[str] = None


@dataclass
class MachineSpec:
    cluster_name: str = ""
    bootstrap: MachineBootstrapRef = field(default_factory=MachineBootstrapRef)


@dataclass
class NodeReference:
    name: str


@dataclass
class MachineStatus:
    phase: str = ""
    node_ref: Optional[NodeReference] = None


@dataclass
class Machine(KubeObject):
    KIND: ClassVar[str] = MACHINE_KIND
    API_VERSION: ClassVar[str] = CAPI_API_VERSION

    metadata: ObjectMeta
    spec: MachineSpec = field(default_factory=MachineSpec)
    status: MachineStatus = field(default_factory=MachineStatus)


@dataclass
class ClusterSpec:
    control_plane_ref: Optional[ObjectReference] = None
    paused: bool = False


@dataclass
class ClusterStatus:
    infrastructure_ready: bool = False


@dataclass
class Cluster(KubeObject):
    KIND: ClassVar[str] = CLUSTER_KIND
    API_VERSION: ClassVar[str] = CAPI_API_VERSION

    metadata: ObjectMeta
    spec: ClusterSpec = field(default_factory=ClusterSpec)
    status: ClusterStatus = field(default_factory=ClusterStatus)


@dataclass
class ControlPlaneSpec:
    kubernetes_version: str = ""
    agent_env_vars: List[EnvVar] = field(default_factory=list)


@dataclass
class ControlPlane(KubeObject):
    KIND: ClassVar[str] = CONTROL_PLANE_KIND
    API_VERSION: ClassVar[str] = BOOTSTRAP_API_VERSION

    metadata: ObjectMeta
    spec: ControlPlaneSpec = field(default_factory=ControlPlaneSpec)


# ---------------------------------------------------------------------
# Core objects
# ---------------------------------------------------------------------
@dataclass
class ServiceAccount(KubeObject):
    KIND: ClassVar[str] = "ServiceAccount"

    metadata: ObjectMeta


@dataclass
class Secret(KubeObject):
    KIND: ClassVar[str] = "Secret"

    metadata: ObjectMeta
    type: str = "Opaque"
    data: Optional[Dict[str, bytes]] = None


@dataclass
class PolicyRule:
    verbs: List[str]
    api_groups: List[str]
    resources: List[str]
    resource_names: List[str] = field(default_factory=list)


@dataclass
class Role(KubeObject):
    KIND: ClassVar[str] = "Role"
    API_VERSION: ClassVar[str] = "rbac.authorization.k8s.io/v1"

    metadata: ObjectMeta
    rules: List[PolicyRule] = field(default_factory=list)


@dataclass
class Subject:
    kind: str
    name: str
    namespace: str = ""


@dataclass
class RoleRef:
    api_group: str
    kind: str
    name: str


@dataclass
class RoleBinding(KubeObject):
    KIND: ClassVar[str] = "RoleBinding"
    API_VERSION: ClassVar[str] = "rbac.authorization.k8s.io/v1"

    metadata: ObjectMeta
    role_ref: Optional[RoleRef] = None
    subjects: List[Subject] = field(default_factory=list)


@dataclass
class ContainerPort:
    container_port: int
    host_port: int = 0


@dataclass
class Container:
    name: str
    ports: List[ContainerPort] = field(default_factory=list)


@dataclass
class Deployment(KubeObject):
    KIND: ClassVar[str] = "Deployment"
    API_VERSION: ClassVar[str] = "apps/v1"

    metadata: ObjectMeta
    containers: List[Container] = field(default_factory=list)


def owner_reference_for(obj: KubeObject, controller: bool = True) -> OwnerReference:
    return OwnerReference(
        api_version=obj.API_VERSION,
        kind=obj.KIND,
        name=obj.metadata.name,
        uid=obj.metadata.uid,
        controller=controller,
        block_owner_deletion=controller,
    )
