"""
Dex OpenID Connect provider.

Dex needs its own externally visible issuer URL in its config file, so the
container starts with a loop waiting for the file and the config is
materialized once the host port is known.
"""

from pydantic import BaseModel, ConfigDict, Field

from ..injector import materializer, wait_for_file_command
from ..models import ContainerSpec, ContainerState, http
from ..ports import resolve

NAME = "dexidp/dex"
TAG = "v2.41.1"
HTTP_PORT = 5556

CONFIG_FILE = "/etc/dex/config.docker.json"


class DexClient(BaseModel):
    """OpenID client application registered in Dex."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    redirect_uris: list[str] = Field(..., alias="redirectURIs")
    secret: str

    @classmethod
    def simple_client(cls) -> "DexClient":
        return cls(id="client", name="Client", redirect_uris=["http://localhost/oidc-callback"], secret="secret")


class DexUser(BaseModel):
    """Static password-db user. ``hash`` is a bcrypt hash of the password."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    hash: str
    username: str
    user_id: str = Field(..., alias="userID")

    @classmethod
    def simple_user(cls) -> "DexUser":
        # password: "user"
        return cls(
            email="user@example.org",
            username="User",
            hash="$2y$10$l.yOBo5a8m1TnfVuvj/gX.y3vvnHiQs0G59rEwIVU2blgcqkUDLjS",
            user_id="user",
        )


class DexConfig(BaseModel):
    """Subset of https://dexidp.io/docs/configuration/ needed for a test instance."""

    model_config = ConfigDict(populate_by_name=True)

    issuer: str
    storage: dict = Field(default_factory=lambda: {"type": "sqlite3", "config": {"file": "/etc/dex/dex.db"}})
    web: dict = Field(default_factory=lambda: {"http": f":{HTTP_PORT}"})
    static_clients: list[DexClient] = Field(default_factory=list, alias="staticClients")
    enable_password_db: bool = Field(True, alias="enablePasswordDB")
    static_passwords: list[DexUser] = Field(default_factory=list, alias="staticPasswords")
    oauth2: dict | None = None


class Dex(BaseModel):
    tag: str = TAG
    clients: list[DexClient] = Field(default_factory=list)
    users: list[DexUser] = Field(default_factory=list)
    allow_password_grants: bool = False
    startup_timeout: float | None = None

    def issuer(self, state: ContainerState) -> str:
        return f"http://{state.host}:{resolve(state, HTTP_PORT)}"

    def render_config(self, state: ContainerState) -> str:
        config = DexConfig(
            issuer=self.issuer(state),
            static_clients=self.clients,
            static_passwords=self.users,
            oauth2={"passwordConnector": "local"} if self.allow_password_grants else None,
        )
        return config.model_dump_json(by_alias=True, exclude_none=True)

    def spec(self) -> ContainerSpec:
        return ContainerSpec(
            image=NAME,
            tag=self.tag,
            cmd=wait_for_file_command(CONFIG_FILE, f"dex serve {CONFIG_FILE}", interval=1),
            exposed_ports=[HTTP_PORT],
            wait_for=[http("/.well-known/openid-configuration", HTTP_PORT, status=200)],
            exec_before_ready=[materializer(CONFIG_FILE, self.render_config)],
            startup_timeout=self.startup_timeout,
        )
