# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events of one controller process
    env: str          # controller/cli
    context: Optional[str]  # kube-context or store name

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(env: str, context: Optional[str]) -> Dict[str, Any]:
    return {
        "ts": now_ts(),
        "run_id": str(uuid.uuid4()),
        "env": env,
        "context": context,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of *ctx* with a fresh timestamp."""
    return {**ctx, "ts": now_ts()}


# ---------------------------------------------------------------------
# Generate
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootstrapSkipped(BaseEvent):
    namespace: str
    name: str
    reason: str
    retry_after: float

@dataclass(frozen=True)
class ObjectsApplied(BaseEvent):
    namespace: str
    name: str
    created: int
    updated: int
    deleted: int

@dataclass(frozen=True)
class DataSecretAssigned(BaseEvent):
    namespace: str
    name: str
    secret_name: str


# ---------------------------------------------------------------------
# Pre-terminate marker handshake
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PreTerminateMarked(BaseEvent):
    namespace: str
    machine: str

@dataclass(frozen=True)
class PreTerminateCleared(BaseEvent):
    namespace: str
    machine: str


# ---------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class EtcdRemovalPending(BaseEvent):
    namespace: str
    name: str
    node: str
    retry_after: float

@dataclass(frozen=True)
class RemovalAllowed(BaseEvent):
    namespace: str
    name: str
    reason: str


# ---------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ReconcileFailed(BaseEvent):
    namespace: str
    name: str
    error: str
