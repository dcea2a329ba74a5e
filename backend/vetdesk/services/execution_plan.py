"""
Execution plan for the discharge orchestration pipeline.

Tracks which steps are enabled, their dependencies, and which have
completed or failed, and answers "what can run next".
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set


logger = logging.getLogger(__name__)


STEP_ORDER: List[str] = [
    "ingest",
    "extractEntities",
    "generateSummary",
    "prepareEmail",
    "scheduleEmail",
    "scheduleCall",
]

STEP_DEPENDENCIES: Dict[str, List[str]] = {
    "ingest": [],
    "extractEntities": ["ingest"],
    "generateSummary": ["ingest", "extractEntities"],
    "prepareEmail": ["generateSummary"],
    "scheduleEmail": ["prepareEmail"],
    "scheduleCall": ["ingest", "extractEntities"],
}


@dataclass
class StepConfig:
    name: str
    enabled: bool
    dependencies: List[str] = field(default_factory=list)
    options: Optional[Dict[str, Any]] = None


def _parse_step(name: str, raw: Any) -> StepConfig:
    dependencies = list(STEP_DEPENDENCIES[name])

    if isinstance(raw, bool):
        return StepConfig(name=name, enabled=raw, dependencies=dependencies)

    if isinstance(raw, dict):
        enabled = raw.get("enabled") is not False
        if isinstance(raw.get("options"), dict):
            options = dict(raw["options"])
        else:
            options = {k: v for k, v in raw.items() if k != "enabled"}
        return StepConfig(name=name, enabled=enabled, dependencies=dependencies, options=options)

    return StepConfig(name=name, enabled=False, dependencies=dependencies)


class ExecutionPlan:
    """
    Dependency-aware bookkeeping for one orchestration run.

    Steps missing from the request are disabled. A dependency on a disabled
    step counts as satisfied, so e.g. generateSummary can run for an
    existing case without ingest or extractEntities.
    """

    def __init__(self, steps: Optional[Dict[str, Any]] = None):
        steps = steps or {}
        self._configs: Dict[str, StepConfig] = {
            name: _parse_step(name, steps.get(name)) for name in STEP_ORDER
        }
        self._started: Set[str] = set()
        self._completed: Set[str] = set()
        self._failed: Set[str] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_step_config(self, step: str) -> Optional[StepConfig]:
        return self._configs.get(step)

    def get_step_dependencies(self, step: str) -> List[str]:
        return list(STEP_DEPENDENCIES.get(step, []))

    def is_enabled(self, step: str) -> bool:
        config = self._configs.get(step)
        return bool(config and config.enabled)

    def get_enabled_steps(self) -> List[str]:
        return [s for s in STEP_ORDER if self._configs[s].enabled]

    def get_completed_steps(self) -> List[str]:
        return [s for s in STEP_ORDER if s in self._completed]

    def get_failed_steps(self) -> List[str]:
        return [s for s in STEP_ORDER if s in self._failed]

    def dependencies_satisfied(self, step: str) -> bool:
        for dep in self.get_step_dependencies(step):
            if self.is_enabled(dep) and dep not in self._completed:
                return False
        return True

    def has_failed_dependency(self, step: str) -> bool:
        return any(dep in self._failed for dep in self.get_step_dependencies(step))

    def should_execute_step(self, step: str) -> bool:
        if not self.is_enabled(step):
            return False
        if step in self._completed or step in self._failed:
            return False
        return self.dependencies_satisfied(step)

    def get_next_batch(self) -> List[str]:
        """Every step that could start right now, in pipeline order."""
        return [
            s for s in STEP_ORDER
            if s not in self._started and self.should_execute_step(s)
        ]

    def can_run_in_parallel(self, steps: List[str]) -> bool:
        names = set(steps)
        for step in steps:
            if step not in STEP_DEPENDENCIES:
                return False
            if names.intersection(STEP_DEPENDENCIES[step]):
                return False
        return True

    def has_remaining_steps(self) -> bool:
        return any(
            s not in self._completed and s not in self._failed
            for s in self.get_enabled_steps()
        )

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def mark_started(self, step: str) -> None:
        self._started.add(step)

    def mark_completed(self, step: str) -> None:
        self._started.discard(step)
        self._completed.add(step)

    def mark_failed(self, step: str) -> None:
        self._started.discard(step)
        self._failed.add(step)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view used for dry runs."""
        return {
            step: {
                "enabled": config.enabled,
                "dependencies": config.dependencies,
                "options": config.options,
            }
            for step, config in self._configs.items()
        }
