from types import SimpleNamespace

import pytest
from kubernetes.client.rest import ApiException

from machinegate.bootstrap.errors import KubeconfigError
from machinegate.etcd.safety import (
    NodeAnnotationSafetyChecker,
    core_api_from_kubeconfig,
    remove_annotation,
    removed_node_name_annotation,
    runtime_command,
)


class FakeCoreApi:
    def __init__(self, annotations=None, missing=False, status=None):
        self.annotations = annotations
        self.missing = missing
        self.status = status
        self.patches = []

    def read_node(self, name):
        if self.missing:
            raise ApiException(status=404, reason="Not Found")
        if self.status:
            raise ApiException(status=self.status, reason="boom")
        return SimpleNamespace(metadata=SimpleNamespace(name=name, annotations=self.annotations))

    def patch_node(self, name, body):
        self.patches.append((name, body))


def _checker(api, seen=None):
    def factory(kubeconfig):
        if seen is not None:
            seen.append(kubeconfig)
        return api

    return NodeAnnotationSafetyChecker(api_factory=factory)


@pytest.mark.parametrize(
    "version,expected",
    [("v1.28.3+rke2r1", "rke2"), ("v1.27.4+k3s1", "k3s"), ("", "rke2"), ("V1.27.4+K3S1", "k3s")],
)
def test_runtime_command(version, expected):
    assert runtime_command(version) == expected


def test_annotation_keys():
    assert remove_annotation("rke2") == "etcd.rke2.cattle.io/remove"
    assert removed_node_name_annotation("k3s") == "etcd.k3s.cattle.io/removed-node-name"


def test_first_call_requests_removal():
    api = FakeCoreApi(annotations=None)
    seen = []

    assert _checker(api, seen).safely_removed(b"kc", "rke2", "node-1") is False
    assert seen == [b"kc"]
    assert api.patches == [("node-1", {"metadata": {"annotations": {"etcd.rke2.cattle.io/remove": "true"}}})]


def test_requested_but_not_confirmed():
    api = FakeCoreApi(annotations={"etcd.rke2.cattle.io/remove": "true"})
    assert _checker(api).safely_removed(b"kc", "rke2", "node-1") is False
    assert api.patches == []


def test_confirmed_removal():
    api = FakeCoreApi(annotations={
        "etcd.k3s.cattle.io/remove": "true",
        "etcd.k3s.cattle.io/removed-node-name": "node-1-abcd",
    })
    assert _checker(api).safely_removed(b"kc", "k3s", "node-1") is True


def test_confirmation_from_other_runtime_does_not_count():
    api = FakeCoreApi(annotations={
        "etcd.k3s.cattle.io/remove": "true",
        "etcd.k3s.cattle.io/removed-node-name": "node-1-abcd",
    })
    assert _checker(api).safely_removed(b"kc", "rke2", "node-1") is False
    assert len(api.patches) == 1


def test_missing_node_is_safe():
    assert _checker(FakeCoreApi(missing=True)).safely_removed(b"kc", "rke2", "node-1") is True


def test_other_api_errors_propagate():
    with pytest.raises(ApiException):
        _checker(FakeCoreApi(status=500)).safely_removed(b"kc", "rke2", "node-1")


@pytest.mark.parametrize("raw", [b"", b"- just\n- a list\n", b"key: [unclosed"])
def test_unusable_kubeconfig(raw):
    with pytest.raises(KubeconfigError):
        core_api_from_kubeconfig(raw)


def test_kubeconfig_without_contexts_is_rejected():
    with pytest.raises(KubeconfigError):
        core_api_from_kubeconfig(b"apiVersion: v1\nkind: Config\nclusters: []\ncontexts: []\nusers: []\n")


def test_kubeconfig_builds_core_api():
    raw = b"""
apiVersion: v1
kind: Config
current-context: c1
clusters:
- name: c1
  cluster:
    server: https://10.0.0.1:6443
    insecure-skip-tls-verify: true
contexts:
- name: c1
  context:
    cluster: c1
    user: admin
users:
- name: admin
  user:
    token: abc
"""
    api = core_api_from_kubeconfig(raw)
    assert api.api_client.configuration.host == "https://10.0.0.1:6443"
