# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/apply/applier.py
from __future__ import annotations

import copy
import logging
from typing import Iterable, List, Sequence, Type

from ..api.models import KubeObject, owner_reference_for
from ..store.errors import NotFoundError
from ..store.memory import ObjectStore
from .diff import APPLIED_SET_ANNOTATION, ApplyPlan, diff

log = logging.getLogger("machinegate")


class Applier:
    """
    Reconciles a desired object set owned by one object against the store.

    Desired objects are stamped with an owner reference to the owner and the
    applied-set annotation, then diffed against what is live. Objects applied
    earlier under the same set but no longer desired are deleted.
    """

    def __init__(self, store: ObjectStore, kinds: Sequence[Type[KubeObject]], set_id: str):
        self.store = store
        self.kinds = {k.KIND: k for k in kinds}
        self.set_id = set_id

    def _prepare(self, owner: KubeObject, desired: Iterable[KubeObject]) -> List[KubeObject]:
        out = []
        ref = owner_reference_for(owner)
        for obj in desired:
            if obj.KIND not in self.kinds:
                raise ValueError(f"{obj.KIND} is not a kind managed by apply set {self.set_id!r}")
            obj = copy.deepcopy(obj)
            meta = obj.metadata
            meta.namespace = meta.namespace or owner.metadata.namespace
            meta.annotations = {**(meta.annotations or {}), APPLIED_SET_ANNOTATION: self.set_id}
            if all(r.uid != ref.uid for r in meta.owner_references):
                meta.owner_references.append(ref)
            out.append(obj)
        return out

    def _previous(self, owner: KubeObject, desired: List[KubeObject]) -> List[KubeObject]:
        live = {
            (o.KIND, o.metadata.namespace, o.metadata.name): o
            for o in self.store.dependents(owner)
            if o.KIND in self.kinds
        }
        for want in desired:
            key = (want.KIND, want.metadata.namespace, want.metadata.name)
            if key in live:
                continue
            try:
                live[key] = self.store.get(type(want), want.metadata.namespace, want.metadata.name)
            except NotFoundError:
                pass
        return list(live.values())

    def plan(self, owner: KubeObject, desired: Iterable[KubeObject]) -> ApplyPlan:
        prepared = self._prepare(owner, desired)
        return diff(self._previous(owner, prepared), prepared, self.set_id)

    def apply(self, owner: KubeObject, desired: Iterable[KubeObject]) -> ApplyPlan:
        plan = self.plan(owner, desired)
        if plan.empty:
            return plan

        log.debug(
            "[apply] %s/%s set=%s %s",
            owner.metadata.namespace, owner.metadata.name, self.set_id, plan.summary(),
        )
        for obj in plan.create:
            self.store.create(obj)
        for obj in plan.update:
            self.store.update(obj)
        for obj in plan.delete:
            try:
                self.store.delete(type(obj), obj.metadata.namespace, obj.metadata.name)
            except NotFoundError:
                # already collected
                pass
        return plan
