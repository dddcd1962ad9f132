"""
Pipeline step contracts.

Every step is a StepDescriptor in the static registry (pipeline/steps.py).
Its handler receives a StepContext and returns a StepResult; the run
orchestrator only sees this uniform interface. The same StepResult is what
each component's "run once" operation returns when called directly.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class StepResult:
    """Uniform output from every "run once" operation and pipeline step."""
    status: str = 'success'      # success/skipped/done/error/LOCKED/LOCK_RACE
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status != 'error'

    def merge(self, other: 'StepResult') -> None:
        """Fold another result's counters into this one (used by fan-out steps)."""
        self.processed += other.processed
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        self.errors.extend(other.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'processed': self.processed,
            'created': self.created,
            'updated': self.updated,
            'skipped': self.skipped,
            'failed': self.failed,
            'errors': list(self.errors),
            'meta': dict(self.meta),
            'duration_ms': self.duration_ms,
        }


@dataclass
class StepContext:
    """What a step handler gets to see about the run it belongs to."""
    run_id: str
    triggered_by: str = 'manual'
    options: Dict[str, Any] = field(default_factory=dict)
    # Results of steps that already ran in this run, keyed by step name
    results: Dict[str, StepResult] = field(default_factory=dict)

    @property
    def dry_run(self) -> bool:
        return bool(self.options.get('dry_run', False))


@dataclass(frozen=True)
class StepDescriptor:
    name: str
    order: int
    handler: Callable[[StepContext], StepResult]
    description: str = ''


def describe_steps(registry: List[StepDescriptor]) -> List[Dict[str, Any]]:
    """
    Serialize the step registry into a JSON-friendly list.

    Returns: [ {"name": "...", "order": 1, "description": "..."}, ... ] sorted by order.
    """
    return [
        {'name': step.name, 'order': step.order, 'description': step.description}
        for step in sorted(registry, key=lambda s: s.order)
    ]


def find_step(registry: List[StepDescriptor], name: str) -> Optional[StepDescriptor]:
    for step in registry:
        if step.name == name:
            return step
    return None
