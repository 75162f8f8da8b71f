# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/api/constants.py

# Kinds
BOOTSTRAP_KIND = "MachineBootstrap"
BOOTSTRAP_API_VERSION = "bootstrap.machinegate.io/v1"
MACHINE_KIND = "Machine"
CLUSTER_KIND = "Cluster"
CAPI_GROUP = "cluster.x-k8s.io"
CAPI_API_VERSION = f"{CAPI_GROUP}/v1beta1"
CONTROL_PLANE_KIND = "MachineControlPlane"

# Cluster API contract
CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
PAUSED_ANNOTATION = "cluster.x-k8s.io/paused"
PRE_TERMINATE_ANNOTATION = "pre-terminate.delete.hook.machine.cluster.x-k8s.io/machinegate-bootstrap-cleanup"
PRE_TERMINATE_OWNER = "machinegate-bootstrap-controller"

# machinegate labels / annotations
BOOTSTRAP_NAME_LABEL = "machinegate.io/bootstrap-name"
MACHINE_NAME_LABEL = "machinegate.io/machine-name"
CLUSTER_NAME_OWNED_LABEL = "machinegate.io/cluster-name"
ROLE_LABEL = "machinegate.io/service-account-role"
PLAN_SECRET_LABEL = "machinegate.io/plan-secret-name"
ETCD_ROLE_LABEL = "machinegate.io/etcd-role"
OS_LABEL = "machinegate.io/os"
FORCE_REMOVE_ETCD_ANNOTATION = "machinegate.io/force-remove-etcd"
BOOTSTRAP_FINALIZER = "machinegate.io/bootstrap-etcd-removal"

ROLE_PLAN = "plan"
ROLE_BOOTSTRAP = "bootstrap"
WINDOWS_OS = "windows"
LINUX_OS = "linux"

# Secret types
SECRET_TYPE_MACHINE_PLAN = "machinegate.io/machine-plan"
SECRET_TYPE_BOOTSTRAP = "machinegate.io/bootstrap"
SECRET_TYPE_SA_TOKEN = "kubernetes.io/service-account-token"
SA_NAME_ANNOTATION = "kubernetes.io/service-account.name"

# Machine phases
PHASE_PENDING = "Pending"
PHASE_PROVISIONING = "Provisioning"
PHASE_PROVISIONED = "Provisioned"
PHASE_RUNNING = "Running"
PHASE_DELETING = "Deleting"
PHASE_DELETED = "Deleted"
PHASE_FAILED = "Failed"
PHASE_UNKNOWN = "Unknown"

# Phases in which a machine still needs a fresh install payload
BOOTSTRAP_PHASES = frozenset({PHASE_PENDING, PHASE_DELETING, PHASE_FAILED, PHASE_PROVISIONING})
