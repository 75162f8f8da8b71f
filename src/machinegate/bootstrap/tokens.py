# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/bootstrap/tokens.py
from __future__ import annotations

import logging
import secrets
from typing import Protocol

from ..api.constants import SA_NAME_ANNOTATION, SECRET_TYPE_SA_TOKEN
from ..api.models import ObjectMeta, Secret, ServiceAccount, owner_reference_for
from ..store.errors import AlreadyExistsError, NotFoundError
from ..store.memory import ObjectStore

log = logging.getLogger("machinegate")

TOKEN_KEY = "token"


class TokenIssuer(Protocol):
    def ensure_token(self, sa: ServiceAccount) -> Secret: ...


def token_secret_name(sa_name: str) -> str:
    return f"{sa_name}-token"


class StoreTokenIssuer:
    """
    Issues a long-lived token secret for a service account.

    The secret is owned by the service account, so it is collected with it.
    Once issued the token never changes; a second call returns the same secret.
    """

    def __init__(self, store: ObjectStore, token_bytes: int = 32):
        self.store = store
        self.token_bytes = token_bytes

    def ensure_token(self, sa: ServiceAccount) -> Secret:
        name = token_secret_name(sa.metadata.name)
        namespace = sa.metadata.namespace
        try:
            existing = self.store.get(Secret, namespace, name)
            if existing.data and existing.data.get(TOKEN_KEY):
                return existing
            existing.data = {**(existing.data or {}), TOKEN_KEY: self._new_token()}
            return self.store.update(existing)
        except NotFoundError:
            pass

        secret = Secret(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace,
                annotations={SA_NAME_ANNOTATION: sa.metadata.name},
                owner_references=[owner_reference_for(sa)],
            ),
            type=SECRET_TYPE_SA_TOKEN,
            data={TOKEN_KEY: self._new_token()},
        )
        try:
            log.debug("[tokens] issuing token secret %s/%s", namespace, name)
            return self.store.create(secret)
        except AlreadyExistsError:
            # lost a race with another worker; theirs wins
            return self.store.get(Secret, namespace, name)

    def _new_token(self) -> bytes:
        return secrets.token_urlsafe(self.token_bytes).encode()
