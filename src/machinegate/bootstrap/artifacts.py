# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/bootstrap/artifacts.py
from __future__ import annotations

import base64
import hashlib
import logging
from typing import Dict, List, Optional, Tuple

from ..api.constants import (
    BOOTSTRAP_NAME_LABEL,
    BOOTSTRAP_PHASES,
    CLUSTER_NAME_OWNED_LABEL,
    CONTROL_PLANE_KIND,
    LINUX_OS,
    MACHINE_NAME_LABEL,
    OS_LABEL,
    PLAN_SECRET_LABEL,
    ROLE_BOOTSTRAP,
    ROLE_LABEL,
    ROLE_PLAN,
    SECRET_TYPE_BOOTSTRAP,
    SECRET_TYPE_MACHINE_PLAN,
    WINDOWS_OS,
)
from ..api.models import (
    BootstrapRequest,
    Cluster,
    EnvVar,
    KubeObject,
    Machine,
    ObjectMeta,
    PolicyRule,
    Role,
    RoleBinding,
    RoleRef,
    Secret,
    ServiceAccount,
    Subject,
)
from ..store.errors import NotFoundError
from ..store.lookup import Lookups
from .installer import ScriptGenerator
from .tokens import TOKEN_KEY, TokenIssuer

log = logging.getLogger("machinegate")

MAX_NAME_LENGTH = 63
PLAN_VERBS = ["watch", "get", "update", "list"]
RBAC_GROUP = "rbac.authorization.k8s.io"
BOOTSTRAP_DATA_KEY = "value"


def safe_concat_name(*parts: str) -> str:
    """
    Join *parts* with '-' and keep the result a valid DNS label.

    Names longer than 63 characters are cut and suffixed with a short sha256
    of the full name; the cut never leaves a trailing non-alphanumeric.
    """
    full = "-".join(parts)
    if len(full) <= MAX_NAME_LENGTH:
        return full
    digest = hashlib.sha256(full.encode()).hexdigest()
    c = full[56]
    if c.isascii() and (c.islower() or c.isdigit()):
        return full[:57] + "-" + digest[:5]
    return full[:56] + "-" + digest[:6]


def plan_secret_name(bootstrap_name: str) -> str:
    return safe_concat_name(bootstrap_name, "machine", "plan")


def bootstrap_identity_name(bootstrap_name: str) -> str:
    return safe_concat_name(bootstrap_name, "machine", "bootstrap")


def plan_secret_labels_and_annotations(
    request: BootstrapRequest, machine: Machine
) -> Tuple[Dict[str, str], Dict[str, str]]:
    labels = {
        MACHINE_NAME_LABEL: machine.metadata.name,
        CLUSTER_NAME_OWNED_LABEL: request.spec.cluster_name,
    }
    labels.update(request.metadata.labels or {})
    annotations = dict(request.metadata.annotations or {})
    return labels, annotations


def plan_artifacts(machine: Machine, request: BootstrapRequest) -> List[KubeObject]:
    """Plan identity, plan secret and the role/binding scoping one to the other."""
    name = plan_secret_name(request.metadata.name)
    namespace = request.metadata.namespace
    labels, annotations = plan_secret_labels_and_annotations(request, machine)

    sa = ServiceAccount(
        metadata=ObjectMeta(
            name=name,
            namespace=namespace,
            labels={
                MACHINE_NAME_LABEL: machine.metadata.name,
                BOOTSTRAP_NAME_LABEL: request.metadata.name,
                ROLE_LABEL: ROLE_PLAN,
                PLAN_SECRET_LABEL: name,
            },
        )
    )
    secret = Secret(
        metadata=ObjectMeta(name=name, namespace=namespace, labels=labels, annotations=annotations),
        type=SECRET_TYPE_MACHINE_PLAN,
    )
    role = Role(
        metadata=ObjectMeta(name=name, namespace=namespace),
        rules=[
            PolicyRule(
                verbs=list(PLAN_VERBS),
                api_groups=[""],
                resources=["secrets"],
                resource_names=[name],
            )
        ],
    )
    binding = RoleBinding(
        metadata=ObjectMeta(name=name, namespace=namespace),
        role_ref=RoleRef(api_group=RBAC_GROUP, kind="Role", name=name),
        subjects=[Subject(kind="ServiceAccount", name=sa.metadata.name, namespace=namespace)],
    )
    return [sa, secret, role, binding]


def machine_platform(machine: Machine) -> str:
    if (machine.metadata.labels or {}).get(OS_LABEL) == WINDOWS_OS:
        return WINDOWS_OS
    return LINUX_OS


def token_hash(token: bytes) -> str:
    return base64.urlsafe_b64encode(hashlib.sha256(token).digest()).decode()


class HostPortProbe:
    """
    Answers whether the control-plane server container binds a host port.

    The answer is computed at most once per instance; build a fresh probe for
    every reconciliation pass.
    """

    def __init__(self, lookups: Lookups, namespace: str, deployment: str, container: str):
        self.lookups = lookups
        self.namespace = namespace
        self.deployment = deployment
        self.container = container
        self._value: Optional[bool] = None

    def __call__(self) -> bool:
        if self._value is None:
            self._value = self._probe()
        return self._value

    def _probe(self) -> bool:
        try:
            deployment = self.lookups.deployments.get(self.namespace, self.deployment)
        except NotFoundError:
            return False
        for container in deployment.containers:
            if container.name != self.container:
                continue
            if any(port.host_port for port in container.ports):
                return True
        return False


class ArtifactGenerator:
    """Builds the bootstrap identity and install payload for a machine."""

    def __init__(self, lookups: Lookups, tokens: TokenIssuer, script_generator: ScriptGenerator):
        self.lookups = lookups
        self.tokens = tokens
        self.script_generator = script_generator

    def env_vars(self, request: BootstrapRequest, cluster: Cluster) -> List[EnvVar]:
        ref = cluster.spec.control_plane_ref
        if ref is None or ref.kind != CONTROL_PLANE_KIND:
            return []
        cp = self.lookups.control_planes.get(request.metadata.namespace, ref.name)
        return [EnvVar(name=e.name, value=e.value) for e in cp.spec.agent_env_vars]

    def bootstrap_secret(
        self,
        namespace: str,
        name: str,
        env_vars: List[EnvVar],
        machine: Machine,
        has_host_port: HostPortProbe,
    ) -> Optional[Secret]:
        try:
            sa = self.lookups.service_accounts.get(namespace, name)
        except NotFoundError:
            return None

        token_secret = self.tokens.ensure_token(sa)
        data = self.script_generator(
            machine_platform(machine),
            token_hash((token_secret.data or {}).get(TOKEN_KEY, b"")),
            env_vars,
            has_host_port(),
        )
        return Secret(
            metadata=ObjectMeta(name=name, namespace=namespace),
            type=SECRET_TYPE_BOOTSTRAP,
            data={BOOTSTRAP_DATA_KEY: data},
        )

    def bootstrap_artifacts(
        self,
        machine: Machine,
        request: BootstrapRequest,
        cluster: Cluster,
        has_host_port: HostPortProbe,
    ) -> Tuple[Optional[Secret], List[KubeObject]]:
        """
        Bootstrap secret plus the bootstrap identity, for machines that still
        need an install payload. The secret is None until the identity exists.
        """
        if machine.status.phase not in BOOTSTRAP_PHASES:
            return None, []

        env_vars = self.env_vars(request, cluster)
        name = bootstrap_identity_name(request.metadata.name)
        sa = ServiceAccount(
            metadata=ObjectMeta(
                name=name,
                namespace=request.metadata.namespace,
                labels={
                    MACHINE_NAME_LABEL: machine.metadata.name,
                    BOOTSTRAP_NAME_LABEL: request.metadata.name,
                    ROLE_LABEL: ROLE_BOOTSTRAP,
                },
            )
        )
        secret = self.bootstrap_secret(sa.metadata.namespace, sa.metadata.name, env_vars, machine, has_host_port)
        return secret, [sa]
