import json
import shlex

import pytest

from container_modules.lifecycle import LifecycleController
from container_modules.models import (
    ContainerState,
    CopyToContainer,
    ExecCommand,
    Healthcheck,
    Http,
    LifecycleState,
    LogMessage,
    OutputMessage,
)
from container_modules.modules.dex import CONFIG_FILE, Dex, DexClient, DexUser
from container_modules.modules.gitea import Gitea, GiteaRepo
from container_modules.modules.kafka import KAFKA_IMAGE_NAME, START_SCRIPT, Kafka
from container_modules.modules.mongo import Mongo
from container_modules.modules.pulsar import Pulsar
from container_modules.modules.redis import Redis


@pytest.fixture
def dex_state() -> ContainerState:
    return ContainerState(id="d" * 64, host="127.0.0.1", ports={"5556/tcp": 32768})


def test_kafka_starts_with_placeholder_process():
    spec = Kafka().spec()

    assert spec.image_ref == "apache/kafka-native:latest"
    assert spec.entrypoint == "bash"
    assert spec.cmd[0] == "-c"
    assert f"while [ ! -f {START_SCRIPT} ]" in spec.cmd[1]
    assert spec.wait_for == ()
    assert [p.key for p in spec.exposed_ports] == ["9092/tcp"]


def test_kafka_start_script_advertises_mapped_port(state):
    (command,) = Kafka().spec().exec_after_start[0](state)

    words = shlex.split(command.cmd[2])
    assert "KAFKA_ADVERTISED_LISTENERS=PLAINTEXT://localhost:49153,BROKER://localhost:9093" in words[2]
    # the placeholder polls for START_SCRIPT, so it must appear complete and executable
    staging = f"{START_SCRIPT}.tmp"
    assert words[3:] == [">", staging, "&&", "chmod", "755", staging, "&&", "mv", "-f", staging, START_SCRIPT]
    assert command.container_ready_conditions == (LogMessage(text="Kafka Server started"),)


def test_kafka_jvm_image():
    assert Kafka(jvm_image=True).spec().image == KAFKA_IMAGE_NAME


def test_kafka_lifecycle_end_to_end(runtime, settings):
    runtime.log_script = [(0.05, "stdout", b"[KafkaRaftServer nodeId=1] Kafka Server started\n")]

    result = LifecycleController(runtime, settings).run(Kafka().spec())

    assert result.ok
    assert result.history[-3:] == [LifecycleState.EVALUATING, LifecycleState.POST_START_EXEC, LifecycleState.READY]
    (exec_event,) = [e for e in runtime.events if e[0] == "exec"]
    assert "PLAINTEXT://localhost:40000" in exec_event[1][2]


def test_dex_config_uses_issuer_from_state(dex_state):
    dex = Dex(clients=[DexClient.simple_client()], users=[DexUser.simple_user()], allow_password_grants=True)

    config = json.loads(dex.render_config(dex_state))

    assert config["issuer"] == "http://127.0.0.1:32768"
    assert config["web"] == {"http": ":5556"}
    assert config["enablePasswordDB"] is True
    assert config["staticClients"][0]["redirectURIs"] == ["http://localhost/oidc-callback"]
    assert config["staticPasswords"][0]["userID"] == "user"
    assert config["oauth2"] == {"passwordConnector": "local"}


def test_dex_without_password_grants_omits_oauth2(dex_state):
    config = json.loads(Dex().render_config(dex_state))
    assert "oauth2" not in config
    assert config["staticClients"] == []


def test_dex_materializes_config_before_ready(dex_state):
    spec = Dex().spec()

    (payload,) = spec.exec_before_ready[0](dex_state)

    assert isinstance(payload, CopyToContainer)
    assert payload.target == CONFIG_FILE
    assert b"http://127.0.0.1:32768" in payload.content
    assert isinstance(spec.wait_for[0], Http)
    assert spec.wait_for[0].path == "/.well-known/openid-configuration"
    assert f"dex serve {CONFIG_FILE}" in spec.cmd[2]


def test_pulsar_admin_commands_in_order():
    pulsar = Pulsar(
        config={"allowAutoTopicCreation": "false"},
        tenants=["t1"],
        namespaces=["t1/ns"],
        topics=["persistent://t1/ns/topic"],
        admin_commands=[["clusters", "list"]],
    )
    spec = pulsar.spec()

    assert spec.env == {"PULSAR_PREFIX_allowAutoTopicCreation": "false"}
    assert [c.cmd[1:3] for c in spec.exec_after_start] == [
        ("tenants", "create"),
        ("namespaces", "create"),
        ("topics", "create"),
        ("clusters", "list"),
    ]
    assert all(c.cmd[0] == "bin/pulsar-admin" for c in spec.exec_after_start)
    assert all(c.cmd_ready_condition.code == 0 for c in spec.exec_after_start)
    assert spec.mounts[0].kind == "tmpfs"
    assert len(spec.wait_for) == 2


def test_gitea_copies_app_ini_and_creates_admin():
    gitea = Gitea(git_hostname="git.test", repos=[GiteaRepo(name="demo", visibility="public")])
    spec = gitea.spec()

    (app_ini,) = spec.copy_to
    assert app_ini.target == "/etc/gitea/app.ini"
    assert b"DOMAIN = git.test" in app_ini.content

    first, second = spec.exec_after_start
    assert first.cmd[:4] == ("gitea", "admin", "user", "create")
    body = json.loads(second.cmd[second.cmd.index("-d") + 1])
    assert body == {"name": "demo", "readme": "Default", "auto_init": True, "private": False}
    assert second.cmd[-1] == "http://localhost:3000/api/v1/user/repos"


def test_gitea_admin_key_and_commands():
    spec = Gitea(admin_key="ssh-ed25519 AAAA", admin_commands=[["auth", "list"]]).spec()
    commands = [c.cmd for c in spec.exec_after_start]

    assert commands[1][-1].endswith("/user/keys")
    assert commands[2] == ("gitea", "admin", "auth", "list")


def test_mongo_replica_set_initiation():
    spec = Mongo(kind="repl_set").spec()

    assert spec.cmd == ("--replSet", "rs")
    (command,) = spec.exec_after_start
    assert isinstance(command, ExecCommand)
    assert isinstance(command.cmd_ready_condition, OutputMessage)
    assert command.container_ready_conditions[0].text == "Rebuilding PrimaryOnlyService due to stepUp"


def test_mongo_standalone_has_no_commands():
    spec = Mongo().spec()
    assert spec.exec_after_start == ()
    assert spec.cmd == ()


def test_redis_variants():
    assert Redis().spec().wait_for == (LogMessage(text="Ready to accept connections"),)

    spec = Redis(use_healthcheck=True).spec()
    assert spec.wait_for == (Healthcheck(),)
    assert spec.healthcheck.test == ("redis-cli", "ping")
