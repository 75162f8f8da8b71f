# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/bootstrap/triggers.py
from __future__ import annotations

from typing import List, Tuple

from ..api.constants import BOOTSTRAP_KIND, BOOTSTRAP_NAME_LABEL
from ..api.models import KubeObject, Machine, ServiceAccount

Key = Tuple[str, str]


def related_bootstrap_keys(obj: KubeObject) -> List[Key]:
    """Map an identity or machine change back to the bootstrap request it concerns."""
    if isinstance(obj, ServiceAccount):
        name = (obj.metadata.labels or {}).get(BOOTSTRAP_NAME_LABEL)
        if name:
            return [(obj.metadata.namespace, name)]
        return []

    if isinstance(obj, Machine):
        ref = obj.spec.bootstrap.config_ref
        if ref is not None and ref.kind == BOOTSTRAP_KIND:
            return [(obj.metadata.namespace, ref.name)]
        return []

    return []
