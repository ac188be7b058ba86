"""
Gitea (rootless image) with an admin account and optional repositories.

Only plain HTTP is supported here; TLS would need certificate generation.
"""

import json
from typing import Literal

from pydantic import BaseModel, Field

from ..models import ContainerSpec, CopyToContainer, ExecCommand, exit_code, http, message_on_stdout

GITEA_IMAGE_NAME = "gitea/gitea"
GITEA_IMAGE_TAG = "1.22.3-rootless"

GITEA_SSH_PORT = 2222
GITEA_HTTP_PORT = 3000

GITEA_CONFIG_FOLDER = "/etc/gitea"
GITEA_DATA_FOLDER = "/var/lib/gitea"

APP_INI = """\
APP_NAME = Gitea
RUN_MODE = prod

[repository]
ROOT = {data}/git/repos

[database]
DB_TYPE = sqlite3
PATH = {data}/data/gitea.db

[security]
INSTALL_LOCK = true

[service]
DISABLE_REGISTRATION = true

[server]
HTTP_PORT = {http_port}
SSH_PORT = {ssh_port}
SSH_LISTEN_PORT = {ssh_port}
START_SSH_SERVER = true
APP_DATA_PATH = {data}/data
DOMAIN = {hostname}
SSH_DOMAIN = {hostname}
ROOT_URL = http://{hostname}/
PROTOCOL = http
"""


class GiteaRepo(BaseModel):
    name: str
    visibility: Literal["public", "private"] = "private"


class Gitea(BaseModel):
    git_hostname: str = "localhost"
    admin_username: str = "git-admin"
    admin_password: str = "git-admin"
    admin_key: str | None = Field(None, description="SSH public key registered for the admin")
    repos: list[GiteaRepo] = Field(default_factory=list)
    admin_commands: list[list[str]] = Field(default_factory=list, description="Extra `gitea admin` invocations")
    startup_timeout: float | None = None

    def render_app_ini(self) -> CopyToContainer:
        content = APP_INI.format(
            data=GITEA_DATA_FOLDER,
            http_port=GITEA_HTTP_PORT,
            ssh_port=GITEA_SSH_PORT,
            hostname=self.git_hostname,
        )
        return CopyToContainer(target=f"{GITEA_CONFIG_FOLDER}/app.ini", content=content.encode())

    def api_curl(self, method: str, path: str, body: dict | None = None) -> list[str]:
        curl = [
            "curl",
            "-sfk",
            "-X",
            method,
            "-H",
            "accept: application/json",
            "-H",
            "Content-Type: application/json",
            "-u",
            f"{self.admin_username}:{self.admin_password}",
        ]
        if body is not None:
            curl += ["-d", json.dumps(body)]
        curl.append(f"http://localhost:{GITEA_HTTP_PORT}/api/v1/{path.lstrip('/')}")
        return curl

    def setup_commands(self) -> list[list[str]]:
        commands = [
            [
                "gitea",
                "admin",
                "user",
                "create",
                "--username",
                self.admin_username,
                "--password",
                self.admin_password,
                "--email",
                f"{self.admin_username}@localhost",
                "--admin",
            ]
        ]
        if self.admin_key:
            commands.append(
                self.api_curl("POST", "/user/keys", {"title": "default", "key": self.admin_key, "read_only": False})
            )
        for repo in self.repos:
            commands.append(
                self.api_curl(
                    "POST",
                    "/user/repos",
                    {"name": repo.name, "readme": "Default", "auto_init": True, "private": repo.visibility == "private"},
                )
            )
        commands += [["gitea", "admin", *c] for c in self.admin_commands]
        return commands

    def spec(self) -> ContainerSpec:
        return ContainerSpec(
            image=GITEA_IMAGE_NAME,
            tag=GITEA_IMAGE_TAG,
            exposed_ports=[GITEA_SSH_PORT, GITEA_HTTP_PORT],
            copy_to=[self.render_app_ini()],
            wait_for=[
                message_on_stdout(f"Starting new Web server: tcp:0.0.0.0:{GITEA_HTTP_PORT}"),
                http("/api/swagger", GITEA_HTTP_PORT, status=200),
            ],
            exec_after_start=[ExecCommand(cmd=c, cmd_ready_condition=exit_code(0)) for c in self.setup_commands()],
            startup_timeout=self.startup_timeout,
        )
