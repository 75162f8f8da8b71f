# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/apply/diff.py
from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from typing import Dict, Iterable, List, Tuple

from ..api.models import KubeObject, OwnerReference

APPLIED_SET_ANNOTATION = "machinegate.io/applied-set"

ObjKey = Tuple[str, str, str]


def object_key(obj: KubeObject) -> ObjKey:
    return obj.KIND, obj.metadata.namespace, obj.metadata.name


@dataclass
class ApplyPlan:
    create: List[KubeObject] = field(default_factory=list)
    update: List[KubeObject] = field(default_factory=list)
    delete: List[KubeObject] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.create or self.update or self.delete)

    def summary(self) -> str:
        return f"create={len(self.create)} update={len(self.update)} delete={len(self.delete)}"


def _merge_owner_refs(live: List[OwnerReference], desired: List[OwnerReference]) -> List[OwnerReference]:
    out = list(live)
    known = {r.uid for r in live}
    for ref in desired:
        if ref.uid not in known:
            out.append(ref)
    return out


def merge(live: KubeObject, desired: KubeObject) -> KubeObject:
    """
    Overlay *desired* onto *live*.

    Labels and annotations are merged with desired winning, owner references
    are unioned, and any top-level field the desired object leaves as None
    keeps its live value. Everything else comes from desired.
    """
    merged = copy.deepcopy(live)
    meta = merged.metadata
    meta.labels = {**(live.metadata.labels or {}), **(desired.metadata.labels or {})}
    meta.annotations = {**(live.metadata.annotations or {}), **(desired.metadata.annotations or {})}
    meta.owner_references = _merge_owner_refs(live.metadata.owner_references, desired.metadata.owner_references)

    for f in fields(desired):
        if f.name == "metadata":
            continue
        value = getattr(desired, f.name)
        if value is None:
            continue
        setattr(merged, f.name, copy.deepcopy(value))
    return merged


def diff(previous: Iterable[KubeObject], desired: Iterable[KubeObject], set_id: str) -> ApplyPlan:
    """
    Compute the writes that turn *previous* into *desired*.

    *previous* holds every live object that either sits at a desired key or was
    applied earlier under *set_id*. Only objects carrying the set annotation are
    ever scheduled for deletion.
    """
    plan = ApplyPlan()
    live_by_key: Dict[ObjKey, KubeObject] = {object_key(o): o for o in previous}
    desired_keys = set()

    for want in desired:
        key = object_key(want)
        desired_keys.add(key)
        have = live_by_key.get(key)
        if have is None:
            plan.create.append(copy.deepcopy(want))
            continue
        merged = merge(have, want)
        if merged != have:
            plan.update.append(merged)

    for key, have in live_by_key.items():
        if key in desired_keys:
            continue
        if (have.metadata.annotations or {}).get(APPLIED_SET_ANNOTATION) == set_id:
            plan.delete.append(have)

    return plan
