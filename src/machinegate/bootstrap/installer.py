# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/bootstrap/installer.py
from __future__ import annotations

import shlex
from pathlib import Path
from typing import Callable, List, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError

from ..api.constants import LINUX_OS, WINDOWS_OS
from ..api.models import EnvVar
from .errors import InstallScriptError

TEMPLATES_DIR = Path(__file__).parent / "templates"

TEMPLATES = {
    LINUX_OS: "install.sh.j2",
    WINDOWS_OS: "install.ps1.j2",
}

# (platform, encoded token hash, env vars, internal api) -> script bytes
ScriptGenerator = Callable[[str, str, List[EnvVar], bool], bytes]


def _psquote(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


class InstallScriptRenderer:
    def __init__(
        self,
        server_url: str,
        ca_checksum: str = "",
        internal_server_url: Optional[str] = None,
        templates_dir: Path = TEMPLATES_DIR,
    ):
        self.server_url = server_url
        self.ca_checksum = ca_checksum
        self.internal_server_url = internal_server_url
        self.env = Environment(loader=FileSystemLoader(str(templates_dir)), autoescape=False, keep_trailing_newline=True)
        self.env.filters["shquote"] = lambda v: shlex.quote(str(v))
        self.env.filters["psquote"] = _psquote

    def render(self, platform: str, token_hash: str, env_vars: List[EnvVar], internal_api: bool) -> bytes:
        template_name = TEMPLATES.get(platform)
        if template_name is None:
            raise InstallScriptError(f"no install script for platform {platform!r}")

        server = self.server_url
        if internal_api and self.internal_server_url:
            server = self.internal_server_url

        try:
            tmpl = self.env.get_template(template_name)
            script = tmpl.render(
                server_url=server.rstrip("/"),
                ca_checksum=self.ca_checksum,
                token_hash=token_hash,
                env_vars=env_vars or [],
                internal_api=internal_api,
            )
        except TemplateError as e:
            raise InstallScriptError(f"failed to render {template_name}: {e}") from e
        return script.encode()

    __call__ = render
