# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/controller/runtime.py
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from ..api.constants import BOOTSTRAP_FINALIZER
from ..api.models import BootstrapRequest, KubeObject, Role, RoleBinding, Secret, ServiceAccount
from ..apply.applier import Applier
from ..bootstrap.artifacts import ArtifactGenerator
from ..bootstrap.handler import BootstrapHandler
from ..bootstrap.installer import InstallScriptRenderer
from ..bootstrap.outcome import Outcome, OutcomeKind
from ..bootstrap.removal import DeletionSafetyGate
from ..bootstrap.tokens import StoreTokenIssuer
from ..bootstrap.triggers import related_bootstrap_keys
from ..config.models import ControllerSettings
from ..etcd.safety import EtcdSafetyChecker, NodeAnnotationSafetyChecker
from ..observers.dispatcher import EventBus
from ..observers.events import ObjectsApplied, ReconcileFailed, new_ctx, stamp
from ..store.errors import NotFoundError
from ..store.lookup import Lookups
from ..store.memory import ObjectStore
from .workqueue import WorkQueue

log = logging.getLogger("machinegate")

APPLY_SET = "machine-bootstrap"
APPLY_KINDS = (ServiceAccount, Secret, Role, RoleBinding)

Key = Tuple[str, str]


class Controller:
    """
    Drives BootstrapHandler from store events.

    Bootstrap requests are queued by their own key; service accounts and
    machines are mapped back through the trigger index. One key is processed
    by at most one worker at a time.
    """

    def __init__(
        self,
        store: ObjectStore,
        handler: BootstrapHandler,
        applier: Optional[Applier] = None,
        queue: Optional[WorkQueue] = None,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[Dict[str, Any]] = None,
    ):
        self.store = store
        self.handler = handler
        self.applier = applier if applier is not None else Applier(store, APPLY_KINDS, APPLY_SET)
        self.queue = queue if queue is not None else WorkQueue()
        self.bus = bus if bus is not None else EventBus()
        self.run_ctx = run_ctx if run_ctx is not None else new_ctx(env="controller", context=None)
        store.watch(self._on_event)

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    def _on_event(self, event_type: str, obj: KubeObject) -> None:
        if isinstance(obj, BootstrapRequest):
            self.queue.add(obj.key)
            return
        for key in related_bootstrap_keys(obj):
            self.queue.add(key)

    def resync(self) -> None:
        for request in self.store.list(BootstrapRequest):
            self.queue.add(request.key)

    # -------------------------------------------------------------------------
    # Reconcile
    # -------------------------------------------------------------------------

    def sync(self, key: Key) -> Outcome:
        ns, name = key
        try:
            return self._reconcile(ns, name)
        except Exception as e:
            log.error("[bootstrap] %s/%s: reconcile failed: %s", ns, name, e)
            self.bus.emit(ReconcileFailed(namespace=ns, name=name, error=str(e), **stamp(self.run_ctx)))
            return Outcome.failed(e)

    def _reconcile(self, ns: str, name: str) -> Outcome:
        try:
            request = self.store.get(BootstrapRequest, ns, name)
        except NotFoundError:
            return Outcome.applied()

        if request.deleting:
            return self._finalize(request)

        if BOOTSTRAP_FINALIZER not in request.metadata.finalizers:
            request.metadata.finalizers.append(BOOTSTRAP_FINALIZER)
            request = self.store.update(request)

        request = self.handler.on_change(request)

        result = self.handler.generate(request, request.status)
        if result.outcome.kind is not OutcomeKind.APPLIED:
            return result.outcome

        plan = self.applier.apply(request, result.objects)
        if not plan.empty:
            self.bus.emit(
                ObjectsApplied(
                    namespace=ns,
                    name=name,
                    created=len(plan.create),
                    updated=len(plan.update),
                    deleted=len(plan.delete),
                    **stamp(self.run_ctx),
                )
            )

        if result.status != request.status:
            request.status = result.status
            self.store.update_status(request)

        return result.outcome

    def _finalize(self, request: BootstrapRequest) -> Outcome:
        if BOOTSTRAP_FINALIZER not in request.metadata.finalizers:
            return Outcome.applied()

        outcome = self.handler.remove(request)
        if outcome.kind is not OutcomeKind.APPLIED:
            return outcome

        request.metadata.finalizers = [f for f in request.metadata.finalizers if f != BOOTSTRAP_FINALIZER]
        self.store.update(request)
        return outcome

    # -------------------------------------------------------------------------
    # Workers
    # -------------------------------------------------------------------------

    def process_next(self, timeout: Optional[float] = None) -> bool:
        key = self.queue.get(timeout)
        if key is None:
            return False
        try:
            outcome = self.sync(key)
            if outcome.kind is OutcomeKind.ERROR:
                delay = self.queue.add_rate_limited(key)
                log.debug("[bootstrap] %s/%s: requeued after error in %.3fs", key[0], key[1], delay)
            else:
                self.queue.forget(key)
                if outcome.kind is OutcomeKind.SKIP:
                    self.queue.add_after(key, outcome.retry_after)
        finally:
            self.queue.done(key)
        return True

    def run_until_idle(self, max_passes: int = 1000) -> int:
        """Process ready keys without blocking; returns the number of passes."""
        passes = 0
        while passes < max_passes and self.process_next(timeout=0):
            passes += 1
        return passes

    def _worker(self) -> None:
        while self.process_next():
            pass

    def run(self, workers: int, stop: threading.Event) -> None:
        self.resync()
        threads: List[threading.Thread] = [
            threading.Thread(target=self._worker, name=f"machinegate-worker-{i}", daemon=True)
            for i in range(workers)
        ]
        for t in threads:
            t.start()
        log.info("controller started with %d workers", workers)

        stop.wait()
        self.queue.shutdown()
        for t in threads:
            t.join()
        log.info("controller stopped")


def build_controller(
    store: ObjectStore,
    settings: ControllerSettings,
    checker: Optional[EtcdSafetyChecker] = None,
    bus: Optional[EventBus] = None,
    queue: Optional[WorkQueue] = None,
) -> Controller:
    """Wire a controller over *store* from settings."""
    bus = bus or EventBus()
    run_ctx = new_ctx(env="controller", context=None)
    lookups = Lookups.from_store(store)

    renderer = InstallScriptRenderer(
        server_url=settings.installer.server_url,
        ca_checksum=settings.installer.ca_checksum,
        internal_server_url=settings.installer.internal_server_url,
    )
    artifacts = ArtifactGenerator(lookups, StoreTokenIssuer(store), renderer.render)
    removal = DeletionSafetyGate(
        lookups,
        store,
        checker or NodeAnnotationSafetyChecker(),
        requeue_after=settings.removal_requeue_seconds,
        bus=bus,
        run_ctx=run_ctx,
    )
    handler = BootstrapHandler(
        lookups,
        store,
        artifacts,
        removal,
        system_namespace=settings.system_namespace,
        server_deployment=settings.server_deployment,
        server_container=settings.server_container,
        requeue_after=settings.readiness_requeue_seconds,
        bus=bus,
        run_ctx=run_ctx,
    )
    return Controller(store, handler, queue=queue, bus=bus, run_ctx=run_ctx)
