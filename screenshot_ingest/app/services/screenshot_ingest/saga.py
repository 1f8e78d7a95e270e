"""Sequential steps with compensating actions.

Used for writes that span systems without a shared transaction (object
storage and the metadata database).
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    name: str
    action: Callable[[], Any]
    compensation: Optional[Callable[[], Any]] = None


class Saga:
    def __init__(self, steps: Optional[List[SagaStep]] = None):
        self.steps: List[SagaStep] = list(steps or [])
        self.compensation_failures: List[str] = []

    def add_step(self, name: str, action: Callable[[], Any], compensation: Optional[Callable[[], Any]] = None) -> "Saga":
        self.steps.append(SagaStep(name, action, compensation))
        return self

    def run(self) -> List[Any]:
        """Run every action in order.

        If step N raises, compensations of steps 0..N-1 run in reverse order
        and the original exception is re-raised. A failing compensation is
        logged and recorded in ``compensation_failures``; it never replaces
        the original error.
        """
        completed: List[SagaStep] = []
        results: List[Any] = []
        for step in self.steps:
            try:
                results.append(step.action())
            except Exception:
                logger.warning("Saga step %s failed; compensating %d step(s)", step.name, len(completed))
                self._compensate(completed)
                raise
            completed.append(step)
        return results

    def _compensate(self, completed: List[SagaStep]) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                step.compensation()
                logger.info("Compensated saga step %s", step.name)
            except Exception:  # noqa: BLE001
                logger.exception("Compensation for saga step %s failed", step.name)
                self.compensation_failures.append(step.name)
