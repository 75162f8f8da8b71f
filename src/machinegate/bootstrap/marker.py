# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/bootstrap/marker.py
from __future__ import annotations

from typing import Optional

from ..api.constants import ETCD_ROLE_LABEL, PRE_TERMINATE_ANNOTATION, PRE_TERMINATE_OWNER
from ..api.models import Machine
from ..store.memory import ObjectStore


def is_etcd(machine: Machine) -> bool:
    return ETCD_ROLE_LABEL in (machine.metadata.labels or {})


def has_marker(machine: Machine) -> bool:
    return PRE_TERMINATE_ANNOTATION in (machine.metadata.annotations or {})


def needs_marker(machine: Machine) -> bool:
    """True for etcd machines whose pre-terminate hook is missing or not ours."""
    if not is_etcd(machine):
        return False
    return (machine.metadata.annotations or {}).get(PRE_TERMINATE_ANNOTATION) != PRE_TERMINATE_OWNER


def set_marker(store: ObjectStore, machine: Machine) -> Machine:
    if not needs_marker(machine):
        return machine
    machine.metadata.annotations = {
        **(machine.metadata.annotations or {}),
        PRE_TERMINATE_ANNOTATION: PRE_TERMINATE_OWNER,
    }
    return store.update(machine)


def clear_marker(store: ObjectStore, machine: Optional[Machine]) -> Optional[Machine]:
    """Drop the pre-terminate hook, unblocking infrastructure teardown."""
    if machine is None or not has_marker(machine):
        return machine
    annotations = dict(machine.metadata.annotations)
    del annotations[PRE_TERMINATE_ANNOTATION]
    machine.metadata.annotations = annotations
    return store.update(machine)
