import threading
import time

import pytest

from machinegate.api.constants import (
    BOOTSTRAP_FINALIZER,
    FORCE_REMOVE_ETCD_ANNOTATION,
    PHASE_RUNNING,
    PRE_TERMINATE_ANNOTATION,
    PRE_TERMINATE_OWNER,
)
from machinegate.api.models import BootstrapRequest, Cluster, Role, RoleBinding, Secret, ServiceAccount
from machinegate.bootstrap.outcome import OutcomeKind
from machinegate.controller.runtime import Controller
from machinegate.controller.workqueue import WorkQueue
from machinegate.observers.dispatcher import EventBus
from machinegate.observers.events import (
    BootstrapSkipped,
    EtcdRemovalPending,
    ObjectsApplied,
    ReconcileFailed,
)
from machinegate.store.errors import NotFoundError

NS = "fleet-default"
KEY = (NS, "b1")


def _versions(world):
    out = {}
    for kind in (ServiceAccount, Secret, Role, RoleBinding, BootstrapRequest):
        for obj in world.store.list(kind, NS):
            out[(kind.KIND, obj.metadata.name)] = obj.metadata.resource_version
    return out


def _gone(world, kind, name):
    try:
        world.store.get(kind, NS, name)
    except NotFoundError:
        return True
    return False


def test_request_without_owner_is_retried_later(world):
    world.add_control_plane()
    world.add_cluster()
    world.add_request()

    world.controller.run_until_idle()

    assert world.store.list(ServiceAccount) == []
    assert world.request().status.ready is False
    assert world.request().metadata.finalizers == [BOOTSTRAP_FINALIZER]
    assert world.controller.queue.delayed() == {KEY: 10.0}
    assert world.capture.of(BootstrapSkipped)


def test_pending_machine_converges_to_ready(world):
    world.standard()

    world.controller.run_until_idle()

    request = world.request()
    assert request.status.ready is True
    assert request.status.data_secret_name == "b1-machine-bootstrap"
    assert request.spec.cluster_name == "c1"

    names = {(type(o).__name__, o.metadata.name) for kind in (ServiceAccount, Secret, Role, RoleBinding)
             for o in world.store.list(kind, NS)}
    assert names == {
        ("ServiceAccount", "b1-machine-plan"),
        ("ServiceAccount", "b1-machine-bootstrap"),
        ("Secret", "b1-machine-plan"),
        ("Secret", "b1-machine-bootstrap"),
        ("Secret", "b1-machine-bootstrap-token"),
        ("Role", "b1-machine-plan"),
        ("RoleBinding", "b1-machine-plan"),
    }

    bootstrap = world.store.get(Secret, NS, "b1-machine-bootstrap")
    assert [r.uid for r in bootstrap.metadata.owner_references] == [request.metadata.uid]
    assert b"https://rancher.example.test" in bootstrap.data["value"]
    assert world.controller.queue.depth() == 0


def test_injected_collaborators_are_kept_when_empty(world):
    queue = WorkQueue(clock=world.clock)
    bus = EventBus()
    controller = Controller(world.store, world.handler, queue=queue, bus=bus, run_ctx={})

    assert queue.depth() == 0
    assert controller.queue is queue
    assert controller.bus is bus
    assert controller.run_ctx == {}

    world.add_request(name="orphan")
    assert queue.depth() == 1


def test_second_pass_writes_nothing(world):
    world.standard()
    world.controller.run_until_idle()
    before = _versions(world)
    applied = len(world.capture.of(ObjectsApplied))

    outcome = world.controller.sync(KEY)

    assert outcome.kind is OutcomeKind.APPLIED
    assert _versions(world) == before
    assert len(world.capture.of(ObjectsApplied)) == applied


def test_data_secret_name_survives_machine_running(world):
    world.standard()
    world.controller.run_until_idle()

    machine = world.machine()
    machine.status.phase = PHASE_RUNNING
    world.store.update(machine)
    world.controller.run_until_idle()

    assert _gone(world, ServiceAccount, "b1-machine-bootstrap")
    assert _gone(world, Secret, "b1-machine-bootstrap")
    assert _gone(world, Secret, "b1-machine-bootstrap-token")
    assert not _gone(world, Secret, "b1-machine-plan")
    assert world.request().status.data_secret_name == "b1-machine-bootstrap"
    assert world.request().status.ready is True


def test_paused_cluster_picked_up_after_retry(world):
    world.add_control_plane()
    world.add_cluster(paused=True)
    machine = world.add_machine()
    world.add_request(machine=machine)
    world.controller.run_until_idle()
    assert world.request().status.ready is False

    cluster = world.store.get(Cluster, NS, "c1")
    cluster.spec.paused = False
    world.store.update(cluster)
    world.controller.run_until_idle()
    assert world.request().status.ready is False

    world.clock.advance(10)
    world.controller.run_until_idle()
    assert world.request().status.ready is True


def test_etcd_marker_handshake(world):
    world.checker.answers = [False, True]
    world.standard(etcd=True, node="node-1")
    world.add_kubeconfig()
    assert PRE_TERMINATE_ANNOTATION not in world.machine().metadata.annotations

    world.controller.run_until_idle()
    assert world.machine().metadata.annotations[PRE_TERMINATE_ANNOTATION] == PRE_TERMINATE_OWNER

    world.store.delete(BootstrapRequest, NS, "b1")
    world.controller.run_until_idle()

    # not yet safe: request held, marker kept, retry in 5s
    assert world.request().deleting
    assert world.machine().metadata.annotations[PRE_TERMINATE_ANNOTATION] == PRE_TERMINATE_OWNER
    assert world.controller.queue.delayed() == {KEY: 5.0}
    assert len(world.capture.of(EtcdRemovalPending)) == 1

    world.clock.advance(5)
    world.controller.run_until_idle()

    assert _gone(world, BootstrapRequest, "b1")
    assert PRE_TERMINATE_ANNOTATION not in world.machine().metadata.annotations
    assert [c[2] for c in world.checker.calls] == ["node-1", "node-1"]
    # owned objects are collected with the request
    assert world.store.list(ServiceAccount, NS) == []
    assert [s.metadata.name for s in world.store.list(Secret, NS)] == ["c1-kubeconfig"]


def test_unsafe_removal_never_completes(world):
    world.checker.answers = [False]
    world.standard(etcd=True, node="node-1")
    world.add_kubeconfig()
    world.controller.run_until_idle()
    world.store.delete(BootstrapRequest, NS, "b1")

    for _ in range(5):
        world.controller.run_until_idle()
        world.clock.advance(5)

    assert world.request().deleting
    assert world.machine().metadata.annotations[PRE_TERMINATE_ANNOTATION] == PRE_TERMINATE_OWNER
    assert len(world.checker.calls) == 5


def test_force_annotation_removes_in_one_pass(world):
    world.checker.answers = [False]
    world.add_control_plane()
    world.add_cluster()
    machine = world.add_machine(etcd=True, node="node-1")
    world.add_request(machine=machine, annotations={FORCE_REMOVE_ETCD_ANNOTATION: "true"})
    world.add_kubeconfig()
    world.controller.run_until_idle()
    assert PRE_TERMINATE_ANNOTATION in world.machine().metadata.annotations

    world.store.delete(BootstrapRequest, NS, "b1")
    world.controller.run_until_idle()

    assert _gone(world, BootstrapRequest, "b1")
    assert PRE_TERMINATE_ANNOTATION not in world.machine().metadata.annotations
    assert world.checker.calls == []


def test_hard_error_is_rate_limited(world, monkeypatch):
    world.standard()

    def boom(request, status):
        raise RuntimeError("api unavailable")

    monkeypatch.setattr(world.handler, "generate", boom)
    world.controller.run_until_idle()

    # the finalizer and cluster-name writes requeue the key once before backoff applies
    failures = world.capture.of(ReconcileFailed)
    assert [e.error for e in failures] == ["api unavailable", "api unavailable"]
    assert world.controller.queue.num_requeues(KEY) == 2
    assert world.controller.queue.delayed()[KEY] == pytest.approx(0.005)

    monkeypatch.undo()
    world.clock.advance(1)
    world.controller.run_until_idle()
    assert world.request().status.ready is True
    assert world.controller.queue.num_requeues(KEY) == 0


def test_sync_of_missing_request_is_noop(world):
    assert world.controller.sync((NS, "nope")).is_applied


def test_resync_queues_every_request(world):
    world.add_request(name="b1")
    world.add_request(name="b2")
    while True:
        key = world.controller.queue.get(timeout=0)
        if key is None:
            break
        world.controller.queue.done(key)

    world.controller.resync()
    assert world.controller.queue.depth() == 2


def test_threaded_run_converges(world):
    world.standard()
    stop = threading.Event()
    t = threading.Thread(target=world.controller.run, args=(2, stop))
    t.start()
    try:
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline and not world.request().status.ready:
            time.sleep(0.01)
    finally:
        stop.set()
        t.join(timeout=10)

    assert not t.is_alive()
    assert world.request().status.data_secret_name == "b1-machine-bootstrap"
