# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/bootstrap/handler.py
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Optional

from ..api.constants import CLUSTER_NAME_LABEL
from ..api.models import BootstrapRequest, BootstrapStatus
from ..observers.dispatcher import EventBus
from ..observers.events import (
    BootstrapSkipped,
    DataSecretAssigned,
    PreTerminateMarked,
    new_ctx,
    stamp,
)
from ..store.lookup import Lookups
from ..store.memory import ObjectStore
from .artifacts import ArtifactGenerator, HostPortProbe, plan_artifacts
from .marker import needs_marker, set_marker
from .outcome import GenerateResult, Outcome
from .readiness import check_readiness
from .removal import DeletionSafetyGate

log = logging.getLogger("machinegate")


class BootstrapHandler:
    """
    Reconciliation core for MachineBootstrap objects.

    on_change() migrates the cluster name, generate() produces the desired
    object set and next status, remove() runs the deletion safety gate. None of
    them enqueue anything themselves; skips carry their retry delay in the
    returned Outcome.
    """

    def __init__(
        self,
        lookups: Lookups,
        store: ObjectStore,
        artifacts: ArtifactGenerator,
        removal: DeletionSafetyGate,
        system_namespace: str = "cattle-system",
        server_deployment: str = "rancher",
        server_container: str = "rancher",
        requeue_after: float = 10.0,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[Dict[str, Any]] = None,
    ):
        self.lookups = lookups
        self.store = store
        self.artifacts = artifacts
        self.removal = removal
        self.system_namespace = system_namespace
        self.server_deployment = server_deployment
        self.server_container = server_container
        self.requeue_after = requeue_after
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(env="controller", context=None)

    # -------------------------------------------------------------------------
    # OnChange
    # -------------------------------------------------------------------------

    def on_change(self, request: Optional[BootstrapRequest]) -> Optional[BootstrapRequest]:
        if request is None:
            return None
        if request.deleting or request.spec.cluster_name:
            return request

        # Older requests for unmanaged clusters only carry the CAPI cluster label
        value = (request.metadata.labels or {}).get(CLUSTER_NAME_LABEL, "")
        if not value:
            return request

        log.debug(
            "[bootstrap] %s/%s: setting cluster name to %s",
            request.metadata.namespace, request.metadata.name, value,
        )
        request = copy.deepcopy(request)
        request.spec.cluster_name = value
        return self.store.update(request)

    # -------------------------------------------------------------------------
    # Generate
    # -------------------------------------------------------------------------

    def _skip(self, request: BootstrapRequest, status: BootstrapStatus, reason: str) -> GenerateResult:
        self.bus.emit(
            BootstrapSkipped(
                namespace=request.metadata.namespace,
                name=request.metadata.name,
                reason=reason,
                retry_after=self.requeue_after,
                **stamp(self.run_ctx),
            )
        )
        return GenerateResult(objects=[], status=status, outcome=Outcome.skip(self.requeue_after, reason=reason))

    def host_port_probe(self) -> HostPortProbe:
        return HostPortProbe(self.lookups, self.system_namespace, self.server_deployment, self.server_container)

    def generate(self, request: BootstrapRequest, status: BootstrapStatus) -> GenerateResult:
        status = copy.deepcopy(status)
        ns, name = request.metadata.namespace, request.metadata.name

        readiness = check_readiness(self.lookups, request)
        if not readiness.ready:
            return self._skip(request, status, readiness.waiting_for)

        machine, cluster = readiness.machine, readiness.cluster
        result = plan_artifacts(machine, request)

        # Etcd machines must carry the pre-terminate hook before they can join
        if needs_marker(machine):
            machine = set_marker(self.store, machine)
            log.debug("[bootstrap] %s/%s: set pre-terminate hook on machine %s", ns, name, machine.metadata.name)
            self.bus.emit(
                PreTerminateMarked(
                    namespace=machine.metadata.namespace,
                    machine=machine.metadata.name,
                    **stamp(self.run_ctx),
                )
            )

        bootstrap_secret, objs = self.artifacts.bootstrap_artifacts(
            machine, request, cluster, self.host_port_probe()
        )

        if bootstrap_secret is not None:
            if status.data_secret_name is None:
                status.data_secret_name = bootstrap_secret.metadata.name
                status.ready = True
                log.debug("[bootstrap] %s/%s: setting dataSecretName: %s", ns, name, status.data_secret_name)
                self.bus.emit(
                    DataSecretAssigned(
                        namespace=ns,
                        name=name,
                        secret_name=status.data_secret_name,
                        **stamp(self.run_ctx),
                    )
                )
            result.append(bootstrap_secret)

        result.extend(objs)
        return GenerateResult(objects=result, status=status, outcome=Outcome.applied())

    # -------------------------------------------------------------------------
    # Remove
    # -------------------------------------------------------------------------

    def remove(self, request: BootstrapRequest) -> Outcome:
        return self.removal.remove(request)
