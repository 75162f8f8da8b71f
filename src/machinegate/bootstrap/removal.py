# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/bootstrap/removal.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..api.constants import CLUSTER_NAME_LABEL, FORCE_REMOVE_ETCD_ANNOTATION
from ..api.models import BootstrapRequest, Machine
from ..etcd.safety import EtcdSafetyChecker, runtime_command
from ..observers.dispatcher import EventBus
from ..observers.events import (
    EtcdRemovalPending,
    PreTerminateCleared,
    RemovalAllowed,
    new_ctx,
    stamp,
)
from ..store.errors import NotFoundError
from ..store.lookup import Lookups
from ..store.memory import ObjectStore
from .marker import clear_marker, has_marker, is_etcd
from .outcome import Outcome
from .readiness import machine_by_owner

log = logging.getLogger("machinegate")

KUBECONFIG_DATA_KEY = "value"


def kubeconfig_secret_name(cluster_name: str) -> str:
    return f"{cluster_name}-kubeconfig"


class DeletionSafetyGate:
    """
    Decides whether a deleting bootstrap request may finish.

    Etcd machines keep their pre-terminate hook until the workload cluster's
    etcd controller confirms the member is out of the voting set. Every other
    path clears the hook (if any) and allows deletion.
    """

    def __init__(
        self,
        lookups: Lookups,
        store: ObjectStore,
        checker: EtcdSafetyChecker,
        requeue_after: float = 5.0,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[Dict[str, Any]] = None,
    ):
        self.lookups = lookups
        self.store = store
        self.checker = checker
        self.requeue_after = requeue_after
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(env="controller", context=None)

    def _allow(self, request: BootstrapRequest, reason: str) -> Outcome:
        self.bus.emit(
            RemovalAllowed(
                namespace=request.metadata.namespace,
                name=request.metadata.name,
                reason=reason,
                **stamp(self.run_ctx),
            )
        )
        return Outcome.applied()

    def _cleanup(self, request: BootstrapRequest, machine: Machine, reason: str) -> Outcome:
        had_marker = has_marker(machine)
        clear_marker(self.store, machine)
        if had_marker:
            self.bus.emit(
                PreTerminateCleared(
                    namespace=machine.metadata.namespace,
                    machine=machine.metadata.name,
                    **stamp(self.run_ctx),
                )
            )
        return self._allow(request, reason)

    def remove(self, request: BootstrapRequest) -> Outcome:
        ns, name = request.metadata.namespace, request.metadata.name
        log.debug("[bootstrap] %s/%s: remove invoked", ns, name)

        cluster_name = (request.metadata.labels or {}).get(CLUSTER_NAME_LABEL, "")
        if not cluster_name:
            log.warning(
                "[bootstrap] %s/%s: CAPI cluster label %s was not found in bootstrap labels, allowing bootstrap to delete",
                ns, name, CLUSTER_NAME_LABEL,
            )
            return self._allow(request, "no cluster label")

        try:
            cluster = self.lookups.clusters.get(ns, cluster_name)
        except NotFoundError:
            log.warning(
                "[bootstrap] %s/%s: CAPI cluster %s/%s was not found, allowing bootstrap to delete",
                ns, name, ns, cluster_name,
            )
            return self._allow(request, "cluster not found")

        cp_ref = cluster.spec.control_plane_ref
        if cp_ref is None:
            log.warning(
                "[bootstrap] %s/%s: CAPI cluster %s/%s control plane reference was nil, allowing bootstrap to delete",
                ns, name, ns, cluster_name,
            )
            return self._allow(request, "no control plane reference")

        cp_ns = cp_ref.namespace or cluster.metadata.namespace
        try:
            cp = self.lookups.control_planes.get(cp_ns, cp_ref.name)
        except NotFoundError:
            log.warning(
                "[bootstrap] %s/%s: control plane %s/%s was not found, allowing bootstrap to delete",
                ns, name, cp_ns, cp_ref.name,
            )
            return self._allow(request, "control plane not found")

        try:
            machine = machine_by_owner(self.lookups.machines, request)
        except NotFoundError:
            # no owner reference, or the machine is already gone
            log.debug("[bootstrap] %s/%s: owning machine not resolvable, allowing bootstrap to delete", ns, name)
            return self._allow(request, "machine not found")

        # The control plane is owned by the cluster and goes away with it
        if cp.deleting or cluster.deleting:
            log.debug("[bootstrap] %s/%s: cluster %s is deleting, skipping etcd safety check", ns, name, cluster_name)
            return self._cleanup(request, machine, "cluster deleting")

        if not is_etcd(machine):
            log.debug(
                "[bootstrap] safe removal for machine %s in cluster %s not necessary as it is not an etcd node",
                machine.metadata.name, cluster_name,
            )
            return self._cleanup(request, machine, "not an etcd node")

        force = (request.metadata.annotations or {}).get(FORCE_REMOVE_ETCD_ANNOTATION, "")
        if force.lower() == "true":
            log.info("[bootstrap] force removing etcd machine %s in cluster %s", machine.metadata.name, cluster_name)
            return self._cleanup(request, machine, "force removal")

        if machine.status.node_ref is None:
            log.info(
                "[bootstrap] no associated node found for machine %s in cluster %s, proceeding with removal",
                machine.metadata.name, cluster_name,
            )
            return self._cleanup(request, machine, "no node reference")

        try:
            kc_secret = self.lookups.secrets.get(ns, kubeconfig_secret_name(cluster_name))
        except NotFoundError:
            log.warning(
                "[bootstrap] %s/%s: kubeconfig for cluster %s was not found, proceeding with removal",
                ns, name, cluster_name,
            )
            return self._cleanup(request, machine, "kubeconfig not found")

        node_name = machine.status.node_ref.name
        removed = self.checker.safely_removed(
            (kc_secret.data or {}).get(KUBECONFIG_DATA_KEY, b""),
            runtime_command(cp.spec.kubernetes_version),
            node_name,
        )
        if not removed:
            log.info(
                "[bootstrap] %s/%s: etcd member on node %s not yet safely removed, retrying in %ss",
                ns, name, node_name, self.requeue_after,
            )
            self.bus.emit(
                EtcdRemovalPending(
                    namespace=ns,
                    name=name,
                    node=node_name,
                    retry_after=self.requeue_after,
                    **stamp(self.run_ctx),
                )
            )
            return Outcome.skip(self.requeue_after, reason=f"etcd member on {node_name} not yet removed")

        return self._cleanup(request, machine, "etcd member removed")
