# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/cli/app.py
from __future__ import annotations

import threading
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from machinegate.api.constants import LINUX_OS, WINDOWS_OS
from machinegate.api.models import BootstrapRequest, EnvVar
from machinegate.bootstrap.artifacts import token_hash
from machinegate.bootstrap.errors import BootstrapError
from machinegate.bootstrap.installer import InstallScriptRenderer
from machinegate.config.loader import load_settings
from machinegate.controller.runtime import build_controller
from machinegate.etcd.safety import NodeAnnotationSafetyChecker, runtime_command
from machinegate.logging.log import init_logging
from machinegate.observers.dispatcher import EventBus
from machinegate.observers.jsonfile import JsonFileObserver
from machinegate.observers.logger import LoggerObserver
from machinegate.store.errors import StoreError
from machinegate.store.manifest import load_manifest, seed_store
from machinegate.store.memory import ObjectStore


app = typer.Typer(help="machinegate bootstrap controller tooling")


def _parse_env(values: List[str]) -> List[EnvVar]:
    out = []
    for item in values:
        if "=" not in item:
            raise typer.BadParameter(f"expected NAME=VALUE, got {item!r}", param_hint="--env")
        name, value = item.split("=", 1)
        out.append(EnvVar(name=name, value=value))
    return out


@app.command("show-config")
def show_config(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Controller settings YAML"),
):
    """Print the effective controller settings."""
    settings = load_settings(config)
    typer.echo(yaml.safe_dump(settings.model_dump(), sort_keys=True).rstrip())


@app.command("install-script")
def install_script(
    token_file: Path = typer.Option(..., "--token-file", help="File holding the bootstrap identity token"),
    platform: str = typer.Option(LINUX_OS, "--platform", help=f"{LINUX_OS} or {WINDOWS_OS}"),
    env: Optional[List[str]] = typer.Option(None, "--env", "-e", help="NAME=VALUE passed to the node agent (repeatable)"),
    internal_api: bool = typer.Option(False, "--internal-api", help="Target the node-local control-plane port"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Controller settings YAML"),
):
    """Render the install script a machine would receive."""
    settings = load_settings(config)
    renderer = InstallScriptRenderer(
        server_url=settings.installer.server_url,
        ca_checksum=settings.installer.ca_checksum,
        internal_server_url=settings.installer.internal_server_url,
    )
    token = token_file.read_bytes().strip()
    try:
        script = renderer.render(platform, token_hash(token), _parse_env(env or []), internal_api)
    except BootstrapError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    typer.echo(script.decode(), nl=False)


@app.command("check-removal")
def check_removal(
    kubeconfig: Path = typer.Option(..., "--kubeconfig", help="Admin kubeconfig of the workload cluster"),
    node: str = typer.Option(..., "--node", help="Node whose etcd member should be retired"),
    kubernetes_version: str = typer.Option(
        "", "--kubernetes-version", help="Cluster version, selects the rke2/k3s etcd controller"
    ),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Controller settings YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output on the console"),
):
    """
    Ask the workload cluster whether the etcd member on NODE is safely removed.
    Exit code 0 when it is, 1 while removal is still pending, 2 when the
    cluster cannot be asked.
    """
    settings = load_settings(config)
    log_dir = Path(settings.log_dir) if settings.log_dir else None
    logger, _, _ = init_logging(base_dir=log_dir, verbose=verbose or settings.verbose)

    runtime = runtime_command(kubernetes_version)
    checker = NodeAnnotationSafetyChecker()
    try:
        removed = checker.safely_removed(kubeconfig.read_bytes(), runtime, node)
    except BootstrapError as e:
        logger.error(str(e))
        raise typer.Exit(code=2)
    except (ApiException, HTTPError, OSError) as e:
        logger.error("cannot query node %s: %s", node, e)
        raise typer.Exit(code=2)

    if removed:
        typer.secho(f"etcd member on {node} is safely removed ({runtime})", fg=typer.colors.GREEN)
        return
    typer.secho(f"etcd member on {node} is not yet removed ({runtime})", fg=typer.colors.YELLOW)
    raise typer.Exit(code=1)


@app.command("reconcile")
def reconcile(
    manifest: Path = typer.Option(
        ..., "--manifest", "-f", exists=True, dir_okay=False, help="YAML documents loaded into the store, owners first"
    ),
    watch: bool = typer.Option(False, "--watch", help="Keep the workers running until interrupted"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Controller settings YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output on the console"),
):
    """
    Reconcile every bootstrap request in MANIFEST against an in-memory store
    and print the resulting request status.
    """
    settings = load_settings(config)
    log_dir = Path(settings.log_dir) if settings.log_dir else None
    logger, run_id, log_path = init_logging(base_dir=log_dir, verbose=verbose or settings.verbose)

    events_file = Path(settings.events_file) if settings.events_file else log_path.parent / f"{run_id}.jsonl"
    bus = EventBus(observers=[LoggerObserver(logger), JsonFileObserver(events_file)])

    store = ObjectStore()
    controller = build_controller(store, settings, bus=bus)
    try:
        seed_store(store, load_manifest(manifest))
    except StoreError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    if watch:
        stop = threading.Event()
        t = threading.Thread(target=controller.run, args=(settings.workers, stop), name="machinegate-controller")
        t.start()
        try:
            while t.is_alive():
                t.join(timeout=0.5)
        except KeyboardInterrupt:
            logger.info("interrupted, stopping workers")
        finally:
            stop.set()
            t.join()
    else:
        passes = controller.run_until_idle()
        logger.debug(f"reconciled in {passes} passes")

    waiting = controller.queue.delayed()
    for request in store.list(BootstrapRequest):
        line = (
            f"{request.metadata.namespace}/{request.metadata.name}: "
            f"ready={str(request.status.ready).lower()} "
            f"dataSecretName={request.status.data_secret_name or '-'}"
        )
        if request.key in waiting:
            line += f" (retry in {waiting[request.key]:.0f}s)"
        typer.echo(line)


if __name__ == "__main__":
    app()
