"""Tests for full build cycles."""

import json

import pytest

from stackgraph.builder import StackBuilder
from stackgraph.errors import CyclicReferenceError, UnknownResourceError, UnsatisfiableGraphError
from stackgraph.models import Pending


def test_build_returns_plan_resolution_and_policy(sample_builder: StackBuilder):
    result = sample_builder.build()

    assert result.plan.stage_ids()[0] == ["vpc", "shared"]
    assert result.resolution.binding("svc", "REDIS_HOST").value == Pending("redis", "host")
    assert result.policy.allows("svc", "redis", 6379)
    json.dumps(result.to_dict())


def test_build_is_a_snapshot(sample_builder: StackBuilder):
    result = sample_builder.build()

    sample_builder.define("service", "worker", {"CACHE": {"ref": "redis.host"}})
    sample_builder.add_dependency("worker", "vpc")
    sample_builder.connect("worker", "redis")

    assert "worker" not in result.plan.order()
    assert not result.policy.allows("worker", "redis", 6379)
    assert "worker" in sample_builder.build().plan.order()


def test_structural_cycle_fails_before_resolution(builder: StackBuilder):
    builder.define("service", "A", {"x": {"ref": "missing.attr"}})
    builder.define("service", "B")
    builder.add_dependency("A", "B")
    builder.add_dependency("B", "A")

    with pytest.raises(UnsatisfiableGraphError) as excinfo:
        builder.build()
    assert excinfo.value.remaining == ["A", "B"]
    assert excinfo.value.cycle == ["A", "B"]


def test_failed_build_leaves_declarations_intact(builder: StackBuilder):
    builder.define("service", "A", {"x": {"ref": "B.y"}})
    builder.define("service", "B", {"y": {"ref": "A.x"}})

    with pytest.raises(CyclicReferenceError):
        builder.build()

    builder.update("B", {"y": "literal"})
    result = builder.build()
    assert result.resolution.attributes_for("A")["x"] == "literal"


def test_plan_reflects_changes_after_rebuild(builder: StackBuilder):
    builder.define("network", "net")
    builder.define("cache", "redis")
    assert builder.plan().stage_ids() == [["net", "redis"]]

    builder.add_dependency("redis", "net")
    assert builder.plan().stage_ids() == [["net"], ["redis"]]

    builder.define("cache", "spare")
    builder.remove("spare")
    assert builder.plan().stage_ids() == [["net"], ["redis"]]


def test_removed_dependency_target_fails_the_build(builder: StackBuilder):
    builder.define("network", "net")
    builder.define("datastore", "db")
    builder.add_dependency("db", "net")
    builder.remove("net")

    with pytest.raises(UnknownResourceError) as excinfo:
        builder.build()

    assert excinfo.value.resource_id == "net"
    assert excinfo.value.context == "dependency db -> net"


def test_removed_dependent_only_narrows_policy(sample_builder: StackBuilder):
    sample_builder.remove("alb")

    result = sample_builder.build()

    assert result.policy["svc"] == ()
    assert "alb" not in result.plan.order()


def test_built_resolution_knows_when_values_become_available(sample_builder: StackBuilder):
    result = sample_builder.build()

    assert result.resolution.available_at("svc", "DB_HOST") == 1
    assert result.resolution.available_at("svc", "SECRET_KEY") == 0
    assert result.resolution.available_at("svc", "DEBUG") is None
    assert result.resolution.availability == result.plan.availability
    assert result.resolution.to_dict()["availability"]["svc.REDIS_HOST"] == 1
    assert sample_builder.resolve().availability == {}
