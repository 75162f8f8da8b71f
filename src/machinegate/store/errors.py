# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/store/errors.py
class StoreError(RuntimeError):
    """Base class for object store failures."""


class NotFoundError(StoreError):
    """Raised when the requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExistsError(StoreError):
    """Raised when creating an object whose key is already taken."""


class ConflictError(StoreError):
    """Raised when a write carries a stale resource_version."""
