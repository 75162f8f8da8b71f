# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/config/models.py

from typing import Optional
from pydantic import BaseModel, Field


class InstallerSettings(BaseModel):
    """Where joining nodes fetch their agent from."""

    server_url: str = "https://localhost"
    internal_server_url: Optional[str] = None
    ca_checksum: str = ""


class ControllerSettings(BaseModel):
    installer: InstallerSettings = Field(default_factory=InstallerSettings)

    # Control-plane service deployment probed for a host port
    system_namespace: str = "cattle-system"
    server_deployment: str = "rancher"
    server_container: str = "rancher"

    readiness_requeue_seconds: float = Field(10.0, gt=0)
    removal_requeue_seconds: float = Field(5.0, gt=0)
    workers: int = Field(2, ge=1)

    log_dir: Optional[str] = None
    events_file: Optional[str] = None
    verbose: bool = False
