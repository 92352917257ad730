"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest

from stackgraph.builder import StackBuilder
from stackgraph.observability import setup_logging


@pytest.fixture(autouse=True)
def _quiet_logging() -> None:
    """Keep structured logs on the current stderr and out of stdout."""
    setup_logging("warning", "console")


@pytest.fixture
def builder() -> StackBuilder:
    return StackBuilder()


@pytest.fixture
def sample_builder() -> StackBuilder:
    """A web service behind a load balancer, backed by Postgres and Redis.

    Stages: [vpc, shared] -> [db, redis] -> [svc] -> [alb]
    """
    b = StackBuilder()
    vpc = b.define("network", "vpc", {"cidr": "10.0.0.0/16"})
    shared = b.define("secret_bundle", "shared", {"SECRET_KEY": "Django secret key"})
    db = b.define("datastore", "db", {"engine": "postgres"})
    redis = b.define("cache", "redis")
    svc = b.define(
        "service",
        "svc",
        {
            "DB_HOST": db.ref("host"),
            "DB_PASSWORD": db.secret("password"),
            "REDIS_HOST": redis.ref("host"),
            "SECRET_KEY": shared.secret("SECRET_KEY"),
            "DEBUG": False,
        },
    )
    alb = b.define("load_balancer", "alb")

    for dependent in (db, redis, svc, alb):
        b.add_dependency(dependent, vpc)
    b.add_dependency(svc, db)
    b.add_dependency(alb, svc)

    b.connect(svc, db)
    b.connect(svc, redis)
    b.connect(alb, svc, 8000, label="http")
    return b


SAMPLE_TOML = """\
stack = "sample"

[[resources]]
id = "vpc"
kind = "network"

[[resources]]
id = "shared"
kind = "SecretBundle"
[resources.attributes]
SECRET_KEY = "Django secret key"

[[resources]]
id = "db"
kind = "datastore"
depends_on = ["vpc"]

[[resources]]
id = "svc"
kind = "service"
depends_on = ["vpc", "db"]
connects_to = [{ target = "db", label = "RDS" }]
[resources.attributes]
DB_HOST = { ref = "db.host" }
SECRET_KEY = { secret = "shared.SECRET_KEY" }
"""


@pytest.fixture
def sample_stack_file(tmp_path: Path) -> Path:
    path = tmp_path / "stack.toml"
    path.write_text(SAMPLE_TOML, encoding="utf-8")
    return path
