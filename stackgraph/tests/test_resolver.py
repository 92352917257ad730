"""Tests for attribute and secret reference resolution."""

import pytest

from stackgraph.builder import StackBuilder
from stackgraph.errors import CyclicReferenceError, UnknownAttributeError, UnknownResourceError
from stackgraph.models import AttributeRef, Pending


def test_kind_output_resolves_to_pending(builder: StackBuilder):
    builder.define("datastore", "db")
    builder.define("service", "svc", {"DB_HOST": {"ref": "db.host"}})

    resolution = builder.resolve()

    binding = resolution.binding("svc", "DB_HOST")
    assert binding.value == Pending("db", "host", secret=False)
    assert binding.producer == "db"
    assert binding.chain == ("svc.DB_HOST", "db.host")
    assert resolution.ordering_constraints() == {"svc": {"db"}}


def test_declared_literal_is_copied_through_a_chain(builder: StackBuilder):
    builder.define("network", "net", {"cidr": "10.0.0.0/16", "tags": ["a"]})
    builder.define("service", "api", {"CIDR": {"ref": "net.cidr"}, "TAGS": {"ref": "net.tags"}})
    builder.define("service", "worker", {"CIDR": {"ref": "api.CIDR"}})

    resolution = builder.resolve()

    binding = resolution.binding("worker", "CIDR")
    assert binding.value == "10.0.0.0/16"
    assert binding.chain == ("worker.CIDR", "api.CIDR", "net.cidr")
    assert not binding.is_pending
    assert resolution.ordering_constraints() == {}

    tags = resolution.attributes_for("api")["TAGS"]
    tags.append("b")
    assert builder.registry.get("net").attributes["tags"] == ["a"]


def test_chain_ending_in_output_waits_for_final_producer(builder: StackBuilder):
    builder.define("cache", "redis")
    builder.define("service", "api", {"CACHE": {"ref": "redis.host"}})
    builder.define("service", "worker", {"CACHE": {"ref": "api.CACHE"}})

    resolution = builder.resolve()

    assert resolution.binding("worker", "CACHE").value == Pending("redis", "host")
    assert resolution.ordering_constraints() == {"api": {"redis"}, "worker": {"redis"}}
    assert {b.consumer for b in resolution.consumers_of("redis")} == {"api", "worker"}


def test_reference_cycle_names_every_participant(builder: StackBuilder):
    builder.define("service", "A", {"x": {"ref": "B.y"}})
    builder.define("service", "B", {"y": {"ref": "A.x"}})

    with pytest.raises(CyclicReferenceError) as excinfo:
        builder.resolve()

    assert excinfo.value.chain == ["A.x", "B.y", "A.x"]
    assert excinfo.value.resources == ["A", "B"]


def test_resource_cannot_wait_for_its_own_output(builder: StackBuilder):
    builder.define("service", "svc", {"SELF_ARN": {"ref": "svc.service_arn"}})
    with pytest.raises(CyclicReferenceError) as excinfo:
        builder.resolve()
    assert excinfo.value.resources == ["svc"]


def test_self_reference_to_declared_literal_is_fine(builder: StackBuilder):
    builder.define("service", "svc", {"PORT": 8000, "BIND": {"ref": "svc.PORT"}})
    assert builder.resolve().attributes_for("svc")["BIND"] == 8000


def test_unknown_producer(builder: StackBuilder):
    builder.define("service", "svc", {"DB_HOST": {"ref": "db.host"}})
    with pytest.raises(UnknownResourceError) as excinfo:
        builder.resolve()
    assert excinfo.value.resource_id == "db"
    assert excinfo.value.context == "svc.DB_HOST"


def test_unknown_attribute(builder: StackBuilder):
    builder.define("cache", "redis")
    builder.define("service", "svc", {"X": {"ref": "redis.password"}})
    with pytest.raises(UnknownAttributeError) as excinfo:
        builder.resolve()
    assert excinfo.value.resource_id == "redis"
    assert excinfo.value.attribute == "password"


def test_secret_key_must_be_declared_on_bundle(builder: StackBuilder):
    shared = builder.define("secret_bundle", "shared", {"SECRET_KEY": "django"})
    builder.define("service", "svc", {"API_KEY": shared.secret("API_KEY")})

    with pytest.raises(UnknownAttributeError) as excinfo:
        builder.resolve()
    assert excinfo.value.resource_id == "shared"
    assert excinfo.value.attribute == "API_KEY"

    builder.update("shared", {"API_KEY": "third party"})
    binding = builder.resolve().binding("svc", "API_KEY")
    assert binding.value == Pending("shared", "API_KEY", secret=True)


def test_bundle_values_are_never_inlined(builder: StackBuilder):
    builder.define("secret_bundle", "shared", {"SECRET_KEY": "placeholder"})
    builder.define("service", "svc", {"KEY": {"ref": "shared.SECRET_KEY"}})

    value = builder.resolve().attributes_for("svc")["KEY"]
    assert value == Pending("shared", "SECRET_KEY", secret=True)


def test_secret_outputs_are_flagged(sample_builder: StackBuilder):
    attrs = sample_builder.resolve().attributes_for("svc")

    assert attrs["DB_HOST"] == Pending("db", "host", secret=False)
    assert attrs["DB_PASSWORD"] == Pending("db", "password", secret=True)
    assert attrs["SECRET_KEY"] == Pending("shared", "SECRET_KEY", secret=True)
    assert attrs["DEBUG"] is False


def test_resolution_is_complete_and_serializable(sample_builder: StackBuilder):
    resolution = sample_builder.resolve()

    assert set(resolution.attributes) == set(sample_builder.registry.ids())
    assert len(resolution.pending()) == 4
    payload = resolution.to_dict()
    refs = {b["reference"] for b in payload["bindings"]}
    assert refs == {"db.host", "db.password", "redis.host", "shared.SECRET_KEY"}
    assert str(AttributeRef("db", "host")) == "db.host"


def test_resources_waiting_on_each_others_outputs(builder: StackBuilder):
    builder.define("service", "A", {"x": {"ref": "B.service_arn"}})
    builder.define("service", "B", {"y": {"ref": "A.service_arn"}})

    with pytest.raises(CyclicReferenceError) as excinfo:
        builder.resolve()

    assert excinfo.value.chain == ["A.x", "B.service_arn", "B.y", "A.service_arn"]
    assert excinfo.value.resources == ["A", "B"]


def test_wait_cycle_through_a_declared_reference(builder: StackBuilder):
    builder.define("service", "api", {"WORKER": {"ref": "worker.service_arn"}})
    builder.define("service", "proxy", {"API": {"ref": "api.service_arn"}})
    builder.define("service", "worker", {"API": {"ref": "proxy.API"}})

    with pytest.raises(CyclicReferenceError) as excinfo:
        builder.resolve()

    assert excinfo.value.chain == [
        "api.WORKER",
        "worker.service_arn",
        "worker.API",
        "proxy.API",
        "api.service_arn",
    ]
