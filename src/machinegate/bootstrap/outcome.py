# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/bootstrap/outcome.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..api.models import BootstrapStatus, KubeObject


class OutcomeKind(str, Enum):
    APPLIED = "applied"
    SKIP = "skip"
    ERROR = "error"


@dataclass(frozen=True)
class Outcome:
    """
    Result of one reconciliation pass.

    APPLIED: the pass ran to completion.
    SKIP: nothing was written this pass; re-invoke after retry_after seconds.
    ERROR: a hard failure; the controller backs off and retries.
    """

    kind: OutcomeKind
    retry_after: Optional[float] = None
    error: Optional[BaseException] = None
    reason: str = ""

    @classmethod
    def applied(cls) -> "Outcome":
        return cls(OutcomeKind.APPLIED)

    @classmethod
    def skip(cls, retry_after: float, reason: str = "") -> "Outcome":
        return cls(OutcomeKind.SKIP, retry_after=retry_after, reason=reason)

    @classmethod
    def failed(cls, error: BaseException) -> "Outcome":
        return cls(OutcomeKind.ERROR, error=error, reason=str(error))

    @property
    def is_skip(self) -> bool:
        return self.kind is OutcomeKind.SKIP

    @property
    def is_applied(self) -> bool:
        return self.kind is OutcomeKind.APPLIED


@dataclass
class GenerateResult:
    objects: List[KubeObject] = field(default_factory=list)
    status: BootstrapStatus = field(default_factory=BootstrapStatus)
    outcome: Outcome = field(default_factory=Outcome.applied)
