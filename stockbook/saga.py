"""
Compensating multi-step writes.

A ``Saga`` runs ``Step`` objects in order. Each step's ``action`` returns a
result; if a later step raises, the ``compensation`` of every step that
already completed is called with that step's result, newest first, and the
original exception is re-raised. When a compensation itself fails the saga
raises ``CompensationFailure`` naming the step and the record it left
behind, because that state needs manual repair.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import CompensationFailure
from .logging_config import get_logger

log = get_logger('saga')


@dataclass
class Step:
    name: str
    action: Callable[[], Any]
    compensation: Optional[Callable[[Any], None]] = None


class Saga:
    def __init__(self, name, steps):
        self.name = name
        self.steps = list(steps)

    def run(self):
        """Execute every step; return the list of step results."""
        completed = []
        for step in self.steps:
            try:
                result = step.action()
            except Exception as exc:
                log.warning('%s: step %r failed (%s), compensating %d step(s)',
                            self.name, step.name, exc, len(completed))
                self._compensate(completed, exc)
                raise
            completed.append((step, result))
        return [result for _, result in completed]

    def _compensate(self, completed, original):
        for step, result in reversed(completed):
            if step.compensation is None:
                continue
            try:
                step.compensation(result)
            except Exception as exc:
                log.error('%s: compensation of step %r failed, record %s orphaned: %s '
                          '(undoing after: %s)', self.name, step.name, result, exc, original)
                raise CompensationFailure(step.name, result, exc, original=original) from exc
            log.info('%s: compensated step %r (record %s)', self.name, step.name, result)
