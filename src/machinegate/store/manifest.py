# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/store/manifest.py
from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Any, Dict, List, Type, Union

import yaml
from pydantic import TypeAdapter, ValidationError
from pydantic.alias_generators import to_snake

from ..api.models import (
    BootstrapRequest,
    Cluster,
    ControlPlane,
    Deployment,
    KubeObject,
    Machine,
    Role,
    RoleBinding,
    Secret,
    ServiceAccount,
)
from .errors import StoreError
from .memory import ObjectStore

KINDS: Dict[str, Type[KubeObject]] = {
    cls.KIND: cls
    for cls in (
        BootstrapRequest,
        Machine,
        Cluster,
        ControlPlane,
        Deployment,
        ServiceAccount,
        Secret,
        Role,
        RoleBinding,
    )
}

# Never read from manifests; assigned by the store
SERVER_FIELDS = {"uid", "resource_version", "deletion_timestamp"}

_ADAPTERS: Dict[str, TypeAdapter] = {}


class ManifestError(StoreError):
    pass


def _adapter(kind: str) -> TypeAdapter:
    if kind not in _ADAPTERS:
        _ADAPTERS[kind] = TypeAdapter(KINDS[kind])
    return _ADAPTERS[kind]


def _decode_secret_data(data: Any, where: str) -> Any:
    # Secret data is base64, as in any Kubernetes manifest
    if not isinstance(data, dict):
        return data
    out = {}
    for key, value in data.items():
        try:
            out[key] = base64.b64decode(str(value), validate=True)
        except binascii.Error as e:
            raise ManifestError(f"{where}.data.{key}: not valid base64: {e}") from e
    return out


def object_from_dict(doc: Dict[str, Any]) -> KubeObject:
    """Build a model object from one manifest document (camelCase or snake_case keys)."""
    if not isinstance(doc, dict):
        raise ManifestError(f"expected a mapping, got {type(doc).__name__}")
    kind = doc.get("kind")
    if kind not in KINDS:
        raise ManifestError(f"unsupported kind {kind!r}")

    body = {k: v for k, v in doc.items() if k not in ("kind", "apiVersion", "api_version")}
    meta = body.get("metadata")
    if isinstance(meta, dict):
        body["metadata"] = {k: v for k, v in meta.items() if to_snake(k) not in SERVER_FIELDS}
    if kind == Secret.KIND and body.get("data") is not None:
        body["data"] = _decode_secret_data(body["data"], kind)

    try:
        return _adapter(kind).validate_python(body)
    except ValidationError as e:
        raise ManifestError(f"{kind}: {e}") from e


def load_manifest(path: Union[str, Path]) -> List[KubeObject]:
    path = Path(path)
    try:
        docs = list(yaml.safe_load_all(path.read_text()))
    except yaml.YAMLError as e:
        raise ManifestError(f"{path}: {e}") from e
    return [object_from_dict(d) for d in docs if d]


def seed_store(store: ObjectStore, objects: List[KubeObject]) -> None:
    """
    Create *objects* in order. Owner references may name their owner by
    name only; the uid is filled in from an already created object.
    """
    created: Dict[tuple, str] = {}
    for obj in objects:
        for ref in obj.metadata.owner_references:
            if not ref.uid:
                uid = created.get((ref.kind, obj.metadata.namespace, ref.name))
                if uid is None:
                    raise ManifestError(
                        f"{obj.KIND} {obj.metadata.namespace}/{obj.metadata.name}: "
                        f"owner {ref.kind} {ref.name} must be listed before it"
                    )
                ref.uid = uid
        out = store.create(obj)
        created[(out.KIND, out.metadata.namespace, out.metadata.name)] = out.metadata.uid
