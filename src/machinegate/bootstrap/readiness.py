# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/bootstrap/readiness.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..api.constants import CAPI_GROUP, MACHINE_KIND, PAUSED_ANNOTATION
from ..api.models import BootstrapRequest, Cluster, KubeObject, Machine
from ..store.errors import NotFoundError
from ..store.lookup import Lookup, Lookups

log = logging.getLogger("machinegate")

# Reasons a bootstrap request is not ready for artifact generation
WAIT_MACHINE_OWNER = "machine to be set as owner reference"
WAIT_CLUSTER_MISSING = "CAPI cluster does not exist"
WAIT_PAUSED = "CAPI cluster or bootstrap is paused"
WAIT_INFRASTRUCTURE = "CAPI cluster infrastructure is not ready"


class NoMachineOwnerError(NotFoundError):
    """The object carries no owner reference to a CAPI machine."""

    def __init__(self, obj: KubeObject):
        super().__init__(MACHINE_KIND, obj.metadata.namespace, f"<owner of {obj.metadata.name}>")


def machine_by_owner(machines: Lookup[Machine], obj: KubeObject) -> Machine:
    """
    Resolve the CAPI machine that owns *obj*.

    Raises NoMachineOwnerError when no such owner reference exists and
    NotFoundError when it points at a machine that is gone.
    """
    for ref in obj.metadata.owner_references:
        group = ref.api_version.split("/", 1)[0]
        if ref.kind == MACHINE_KIND and group == CAPI_GROUP:
            return machines.get(obj.metadata.namespace, ref.name)
    raise NoMachineOwnerError(obj)


def is_paused(cluster: Cluster, obj: KubeObject) -> bool:
    if cluster.spec.paused:
        return True
    return PAUSED_ANNOTATION in (obj.metadata.annotations or {})


@dataclass(frozen=True)
class Readiness:
    machine: Optional[Machine] = None
    cluster: Optional[Cluster] = None
    waiting_for: str = ""

    @property
    def ready(self) -> bool:
        return not self.waiting_for


def check_readiness(lookups: Lookups, request: BootstrapRequest) -> Readiness:
    """
    Evaluate every precondition for generating artifacts, in order.

    Unmet preconditions are reported through Readiness.waiting_for and never
    raised; unexpected lookup failures propagate.
    """
    ns, name = request.metadata.namespace, request.metadata.name

    try:
        machine = machine_by_owner(lookups.machines, request)
    except NotFoundError:
        log.debug("[bootstrap] %s/%s: waiting: %s", ns, name, WAIT_MACHINE_OWNER)
        return Readiness(waiting_for=WAIT_MACHINE_OWNER)

    try:
        cluster = lookups.clusters.get(machine.metadata.namespace, machine.spec.cluster_name)
    except NotFoundError:
        log.debug("[bootstrap] %s/%s: waiting: %s", ns, name, WAIT_CLUSTER_MISSING)
        return Readiness(machine=machine, waiting_for=WAIT_CLUSTER_MISSING)

    if is_paused(cluster, cluster) or is_paused(cluster, request):
        log.debug("[bootstrap] %s/%s: waiting: %s", ns, name, WAIT_PAUSED)
        return Readiness(machine=machine, cluster=cluster, waiting_for=WAIT_PAUSED)

    if not cluster.status.infrastructure_ready:
        log.debug("[bootstrap] %s/%s: waiting: %s", ns, name, WAIT_INFRASTRUCTURE)
        return Readiness(machine=machine, cluster=cluster, waiting_for=WAIT_INFRASTRUCTURE)

    return Readiness(machine=machine, cluster=cluster)
