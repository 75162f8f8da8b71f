# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/bootstrap/errors.py
class BootstrapError(RuntimeError):
    """Base class for bootstrap reconciliation failures."""


class InstallScriptError(BootstrapError):
    """Raised when an install script cannot be rendered."""


class KubeconfigError(BootstrapError):
    """Raised when a cluster admin kubeconfig secret cannot be used."""
