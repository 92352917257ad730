"""Tests for resource definitions and attribute validation."""

import pytest

from stackgraph.errors import DuplicateIdError, InvalidAttributeError, UnknownResourceError
from stackgraph.models import AttributeRef, ResourceKind, SecretRef
from stackgraph.registry import ResourceRegistry


def test_define_returns_handle_and_keeps_definition_order():
    registry = ResourceRegistry()
    net = registry.define("network", "net")
    registry.define(ResourceKind.DATASTORE, "db", {"engine": "postgres"})
    registry.define("SecretBundle", "shared")

    assert net.id == "net"
    assert net.kind is ResourceKind.NETWORK
    assert registry.ids() == ["net", "db", "shared"]
    assert registry.get("shared").kind is ResourceKind.SECRET_BUNDLE
    assert len(registry) == 3
    assert "db" in registry


def test_duplicate_id_rejected_across_kinds():
    registry = ResourceRegistry()
    registry.define("datastore", "db")

    with pytest.raises(DuplicateIdError) as excinfo:
        registry.define("cache", "db")

    assert excinfo.value.resource_id == "db"
    assert "datastore" in str(excinfo.value)
    assert registry.get("db").kind is ResourceKind.DATASTORE


def test_unknown_kind_is_invalid_attribute():
    registry = ResourceRegistry()
    with pytest.raises(InvalidAttributeError) as excinfo:
        registry.define("mainframe", "m1")
    assert excinfo.value.attribute == "kind"


@pytest.mark.parametrize("bad_id", ["", "-leading", "has space", "dot.ted"])
def test_malformed_ids_rejected(bad_id):
    with pytest.raises(InvalidAttributeError):
        ResourceRegistry().define("network", bad_id)


def test_reference_forms_are_coerced():
    registry = ResourceRegistry()
    registry.define(
        "service",
        "svc",
        {
            "DB_HOST": {"ref": "db.host"},
            "DB_PASSWORD": {"secret": "db.password"},
            "PORTS": (80, 443),
            "LABELS": {"team": "core"},
        },
    )
    attrs = registry.get("svc").attributes

    assert attrs["DB_HOST"] == AttributeRef("db", "host")
    assert isinstance(attrs["DB_PASSWORD"], SecretRef)
    assert attrs["DB_PASSWORD"].key == "password"
    assert attrs["PORTS"] == [80, 443]
    assert attrs["LABELS"] == {"team": "core"}


def test_references_to_undefined_resources_are_accepted_at_definition_time():
    registry = ResourceRegistry()
    registry.define("service", "svc", {"DB_HOST": AttributeRef("db", "host")})
    assert registry.get("svc").references() == {"DB_HOST": AttributeRef("db", "host")}


@pytest.mark.parametrize(
    "value",
    [
        {"ref": "no-attribute"},
        {"ref": "db."},
        AttributeRef("db", "1bad"),
        object(),
        {"nested": object()},
    ],
)
def test_invalid_attribute_values_rejected(value):
    registry = ResourceRegistry()
    with pytest.raises(InvalidAttributeError) as excinfo:
        registry.define("service", "svc", {"X": value})
    assert excinfo.value.resource_id == "svc"
    assert excinfo.value.attribute == "X"
    assert "svc" not in registry


def test_invalid_attribute_name_rejected():
    with pytest.raises(InvalidAttributeError):
        ResourceRegistry().define("service", "svc", {"bad name": 1})


def test_attributes_are_read_only():
    registry = ResourceRegistry()
    registry.define("service", "svc", {"A": 1})
    with pytest.raises(TypeError):
        registry.get("svc").attributes["A"] = 2  # type: ignore[index]


def test_update_merges_attributes_and_keeps_position():
    registry = ResourceRegistry()
    registry.define("service", "svc", {"A": 1, "B": 2})
    registry.define("network", "net")
    registry.update("svc", {"B": 3, "C": {"ref": "net.vpc_id"}})

    svc = registry.get("svc")
    assert dict(svc.attributes) == {"A": 1, "B": 3, "C": AttributeRef("net", "vpc_id")}
    assert registry.ids() == ["svc", "net"]


def test_remove_and_unknown_lookup():
    registry = ResourceRegistry()
    registry.define("cache", "redis")
    registry.remove("redis")

    assert "redis" not in registry
    with pytest.raises(UnknownResourceError) as excinfo:
        registry.get("redis")
    assert "redis" in str(excinfo.value)


def test_copy_is_independent():
    registry = ResourceRegistry()
    registry.define("cache", "redis")
    snapshot = registry.copy()
    registry.define("network", "net")

    assert snapshot.ids() == ["redis"]
    assert registry.ids() == ["redis", "net"]


def test_of_kind_and_outputs():
    registry = ResourceRegistry()
    registry.define("datastore", "db")
    registry.define("secret_bundle", "shared", {"API_KEY": "third-party key"})

    assert [r.id for r in registry.of_kind("datastore")] == ["db"]
    db = registry.get("db")
    assert {"host", "port", "password"} <= db.outputs
    assert db.is_secret_output("password")
    assert not db.is_secret_output("host")
    assert "API_KEY" in registry.get("shared").outputs


def test_literal_containers_are_copied_on_define():
    registry = ResourceRegistry()
    tags = ["web"]
    labels = {"team": {"name": "core"}}
    registry.define("service", "svc", {"TAGS": tags, "LABELS": labels})
    snapshot = registry.copy()

    tags.append("public")
    labels["team"]["name"] = "platform"

    assert registry.get("svc").attributes["TAGS"] == ["web"]
    assert snapshot.get("svc").attributes["LABELS"] == {"team": {"name": "core"}}
