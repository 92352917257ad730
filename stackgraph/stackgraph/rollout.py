"""Rollout tracking for provisioning backends.

A backend walks a ``ProvisioningPlan`` stage by stage, reports the outputs
each resource generated, and asks for a consumer's attributes with every
pending value filled in. Per resource: UNVISITED -> IN_STAGE -> MATERIALIZED.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .errors import RolloutError
from .models import Pending
from .observability import get_logger
from .planner import ProvisioningPlan, ResourceState, Stage

log = get_logger("rollout")


class Rollout:
    """Stage-ordered materialization state over one plan."""

    def __init__(self, plan: ProvisioningPlan):
        self.plan = plan
        self._state: dict[str, ResourceState] = {rid: ResourceState.UNVISITED for rid in plan.order()}
        self._outputs: dict[str, dict[str, Any]] = {}
        self._current: int | None = None
        self._next = 0

    def state(self, resource_id: str) -> ResourceState:
        if resource_id not in self._state:
            raise RolloutError(f"Resource '{resource_id}' is not part of this plan")
        return self._state[resource_id]

    @property
    def current_stage(self) -> Stage | None:
        return self.plan.stages[self._current] if self._current is not None else None

    @property
    def is_complete(self) -> bool:
        return all(s is ResourceState.MATERIALIZED for s in self._state.values())

    def required_outputs(self, resource_id: str) -> set[str]:
        """Attributes of ``resource_id`` that other resources are waiting for."""
        required = set()
        for stage in self.plan.stages:
            for planned in stage.resources:
                for value in planned.pending().values():
                    if value.resource_id == resource_id:
                        required.add(value.attribute)
        return required

    def start_stage(self) -> Stage:
        """Move the next stage to IN_STAGE once every earlier stage is materialized."""
        if self._current is not None:
            waiting = [rid for rid in self.plan.stages[self._current].ids if self._state[rid] is not ResourceState.MATERIALIZED]
            raise RolloutError(f"Stage {self._current} still has unmaterialized resources: {', '.join(waiting)}")
        if self._next >= len(self.plan.stages):
            raise RolloutError("Every stage has already been started")

        stage = self.plan.stages[self._next]
        for rid in stage.ids:
            self._state[rid] = ResourceState.IN_STAGE
        self._current = self._next
        self._next += 1
        log.info("rollout.stage_started", stage=stage.index, resources=stage.ids)
        return stage

    def materialize(self, resource_id: str, outputs: Mapping[str, Any] | None = None) -> None:
        """Record that ``resource_id`` exists, with the outputs the backend generated."""
        state = self.state(resource_id)
        if state is not ResourceState.IN_STAGE:
            raise RolloutError(f"Resource '{resource_id}' is {state.value}, not in the current stage")

        recorded = dict(outputs or {})
        missing = sorted(self.required_outputs(resource_id) - set(recorded))
        if missing:
            raise RolloutError(f"Resource '{resource_id}' is missing outputs needed downstream: {', '.join(missing)}")

        self._outputs[resource_id] = recorded
        self._state[resource_id] = ResourceState.MATERIALIZED
        log.debug("rollout.materialized", resource=resource_id, outputs=sorted(recorded))

        stage = self.plan.stages[self._current]  # type: ignore[index]
        if all(self._state[rid] is ResourceState.MATERIALIZED for rid in stage.ids):
            self._current = None

    def outputs_of(self, resource_id: str) -> dict[str, Any]:
        if self.state(resource_id) is not ResourceState.MATERIALIZED:
            raise RolloutError(f"Resource '{resource_id}' has not been materialized")
        return dict(self._outputs[resource_id])

    def render(self, resource_id: str) -> dict[str, Any]:
        """Attributes of ``resource_id`` with pending values replaced by producer outputs."""
        planned = self.plan.resource(resource_id)
        rendered: dict[str, Any] = {}
        for name, value in planned.attributes.items():
            if isinstance(value, Pending):
                rendered[name] = self._fill(resource_id, name, value)
            else:
                rendered[name] = value
        return rendered

    def _fill(self, consumer: str, attribute: str, pending: Pending) -> Any:
        if self._state.get(pending.resource_id) is not ResourceState.MATERIALIZED:
            raise RolloutError(
                f"{consumer}.{attribute} waits for {pending.resource_id}.{pending.attribute}, "
                f"but '{pending.resource_id}' is not materialized"
            )
        outputs = self._outputs[pending.resource_id]
        if pending.attribute not in outputs:
            raise RolloutError(f"'{pending.resource_id}' did not report output '{pending.attribute}'")
        return outputs[pending.attribute]
