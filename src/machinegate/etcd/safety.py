# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/etcd/safety.py
from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..bootstrap.errors import KubeconfigError

log = logging.getLogger("machinegate")

RUNTIME_RKE2 = "rke2"
RUNTIME_K3S = "k3s"


def runtime_command(kubernetes_version: str) -> str:
    """Pick the distribution whose etcd controller manages the cluster."""
    if RUNTIME_K3S in (kubernetes_version or "").lower():
        return RUNTIME_K3S
    return RUNTIME_RKE2


def remove_annotation(runtime: str) -> str:
    return f"etcd.{runtime}.cattle.io/remove"


def removed_node_name_annotation(runtime: str) -> str:
    return f"etcd.{runtime}.cattle.io/removed-node-name"


class EtcdSafetyChecker(Protocol):
    def safely_removed(self, kubeconfig: bytes, runtime: str, node_name: str) -> bool: ...


def core_api_from_kubeconfig(kubeconfig: bytes) -> client.CoreV1Api:
    try:
        cfg = yaml.safe_load(kubeconfig)
    except yaml.YAMLError as e:
        raise KubeconfigError(f"kubeconfig is not valid YAML: {e}") from e
    if not isinstance(cfg, dict):
        raise KubeconfigError("kubeconfig is empty or not a mapping")
    try:
        api_client = config.new_client_from_config_dict(cfg)
    except config.ConfigException as e:
        raise KubeconfigError(f"kubeconfig rejected: {e}") from e
    return client.CoreV1Api(api_client)


class NodeAnnotationSafetyChecker:
    """
    Asks the workload cluster's etcd controller to retire a member.

    The distribution's etcd controller watches the node annotation
    etcd.<runtime>.cattle.io/remove. Once it has taken the member out of the
    voting set it records etcd.<runtime>.cattle.io/removed-node-name on the
    node. A node that no longer exists has nothing left to remove.

    The first call for a node only requests removal and answers False; later
    calls answer True once the controller has confirmed.
    """

    def __init__(self, api_factory: Optional[Callable[[bytes], Any]] = None):
        self.api_factory = api_factory or core_api_from_kubeconfig

    def safely_removed(self, kubeconfig: bytes, runtime: str, node_name: str) -> bool:
        api = self.api_factory(kubeconfig)

        try:
            node = api.read_node(node_name)
        except ApiException as e:
            if e.status == 404:
                log.debug("[etcd] node %s not found, member already gone", node_name)
                return True
            raise

        annotations = (node.metadata.annotations if node.metadata else None) or {}
        remove_key = remove_annotation(runtime)

        if annotations.get(remove_key) != "true":
            log.info("[etcd] requesting removal of etcd member on node %s", node_name)
            api.patch_node(node_name, {"metadata": {"annotations": {remove_key: "true"}}})
            return False

        if annotations.get(removed_node_name_annotation(runtime)):
            log.debug("[etcd] etcd member on node %s was removed", node_name)
            return True

        log.debug("[etcd] waiting for etcd member on node %s to be removed", node_name)
        return False
