import pytest

from machinegate.api.constants import (
    BOOTSTRAP_KIND,
    CAPI_API_VERSION,
    CLUSTER_NAME_LABEL,
    CONTROL_PLANE_KIND,
    ETCD_ROLE_LABEL,
    OS_LABEL,
    PHASE_PENDING,
)
from machinegate.api.models import (
    BootstrapRequest,
    Cluster,
    ClusterSpec,
    ClusterStatus,
    Container,
    ContainerPort,
    ControlPlane,
    ControlPlaneSpec,
    Deployment,
    EnvVar,
    Machine,
    MachineBootstrapRef,
    MachineSpec,
    MachineStatus,
    NodeReference,
    ObjectMeta,
    ObjectReference,
    OwnerReference,
    Secret,
)
from machinegate.config.models import ControllerSettings, InstallerSettings
from machinegate.controller.runtime import build_controller
from machinegate.controller.workqueue import WorkQueue
from machinegate.observers.dispatcher import EventBus
from machinegate.store.lookup import Lookups
from machinegate.store.memory import ObjectStore

NS = "fleet-default"


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class Capture:
    def __init__(self):
        self.events = []

    def notify(self, ev):
        self.events.append(ev)

    def of(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


class FakeChecker:
    """Consensus-layer stand-in; answers are consumed in order, the last one repeats."""

    def __init__(self, *answers):
        self.answers = list(answers) or [True]
        self.calls = []

    def safely_removed(self, kubeconfig, runtime, node_name):
        self.calls.append((kubeconfig, runtime, node_name))
        if len(self.answers) > 1:
            return self.answers.pop(0)
        return self.answers[0]


class World:
    """A store plus a fully wired controller and builders for the objects it watches."""

    def __init__(self):
        self.store = ObjectStore()
        self.lookups = Lookups.from_store(self.store)
        self.clock = FakeClock()
        self.capture = Capture()
        self.checker = FakeChecker(True)
        self.settings = ControllerSettings(
            installer=InstallerSettings(server_url="https://rancher.example.test", ca_checksum="abc123")
        )
        self.controller = build_controller(
            self.store,
            self.settings,
            checker=self.checker,
            bus=EventBus([self.capture]),
            queue=WorkQueue(clock=self.clock),
        )
        self.handler = self.controller.handler

    # ----------------------------------------------------------------- builders

    def add_control_plane(self, name="c1-cp", version="v1.28.3+rke2r1", env_vars=None):
        return self.store.create(
            ControlPlane(
                metadata=ObjectMeta(name=name, namespace=NS),
                spec=ControlPlaneSpec(kubernetes_version=version, agent_env_vars=env_vars or []),
            )
        )

    def add_cluster(self, name="c1", ready=True, paused=False, control_plane="c1-cp", annotations=None):
        ref = None
        if control_plane:
            ref = ObjectReference(kind=CONTROL_PLANE_KIND, name=control_plane, namespace=NS)
        return self.store.create(
            Cluster(
                metadata=ObjectMeta(name=name, namespace=NS, annotations=annotations or {}),
                spec=ClusterSpec(control_plane_ref=ref, paused=paused),
                status=ClusterStatus(infrastructure_ready=ready),
            )
        )

    def add_machine(self, name="m1", cluster="c1", phase=PHASE_PENDING, etcd=False, node=None,
                    bootstrap="b1", windows=False, annotations=None):
        labels = {}
        if etcd:
            labels[ETCD_ROLE_LABEL] = "true"
        if windows:
            labels[OS_LABEL] = "windows"
        return self.store.create(
            Machine(
                metadata=ObjectMeta(name=name, namespace=NS, labels=labels, annotations=annotations or {}),
                spec=MachineSpec(
                    cluster_name=cluster,
                    bootstrap=MachineBootstrapRef(
                        config_ref=ObjectReference(kind=BOOTSTRAP_KIND, name=bootstrap, namespace=NS)
                    ),
                ),
                status=MachineStatus(phase=phase, node_ref=NodeReference(node) if node else None),
            )
        )

    def add_request(self, name="b1", machine=None, cluster_label="c1", labels=None, annotations=None, spec_cluster=""):
        all_labels = dict(labels or {})
        if cluster_label:
            all_labels[CLUSTER_NAME_LABEL] = cluster_label
        owners = []
        if machine is not None:
            owners.append(
                OwnerReference(
                    api_version=CAPI_API_VERSION,
                    kind="Machine",
                    name=machine.metadata.name,
                    uid=machine.metadata.uid,
                    controller=True,
                )
            )
        request = BootstrapRequest(
            metadata=ObjectMeta(
                name=name,
                namespace=NS,
                labels=all_labels,
                annotations=annotations or {},
                owner_references=owners,
            )
        )
        request.spec.cluster_name = spec_cluster
        return self.store.create(request)

    def add_kubeconfig(self, cluster="c1", value=b"apiVersion: v1\nkind: Config\n"):
        return self.store.create(
            Secret(metadata=ObjectMeta(name=f"{cluster}-kubeconfig", namespace=NS), data={"value": value})
        )

    def add_server_deployment(self, host_port=0):
        return self.store.create(
            Deployment(
                metadata=ObjectMeta(name="rancher", namespace="cattle-system"),
                containers=[Container(name="rancher", ports=[ContainerPort(container_port=443, host_port=host_port)])],
            )
        )

    def standard(self, etcd=False, node=None, phase=PHASE_PENDING, env_vars=None):
        """Ready cluster, control plane, one machine and its bootstrap request."""
        self.add_control_plane(env_vars=env_vars)
        self.add_cluster()
        machine = self.add_machine(etcd=etcd, node=node, phase=phase)
        request = self.add_request(machine=machine)
        return machine, request

    # ----------------------------------------------------------------- readers

    def request(self, name="b1"):
        return self.store.get(BootstrapRequest, NS, name)

    def machine(self, name="m1"):
        return self.store.get(Machine, NS, name)


@pytest.fixture
def world():
    return World()


@pytest.fixture
def env_vars():
    return [EnvVar(name="HTTP_PROXY", value="http://proxy:3128")]
