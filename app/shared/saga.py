"""Linear saga runner with one compensation per step."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

SagaAction = Callable[["SagaContext"], Awaitable[Any]]


@dataclass(slots=True)
class SagaStep:
    """Named action and the compensation that undoes it."""

    name: str
    action: SagaAction
    compensation: SagaAction | None = None


@dataclass(slots=True)
class SagaContext:
    """Mutable bag shared by the steps of one saga run."""

    values: dict[str, Any] = field(default_factory=dict)
    completed: list[str] = field(default_factory=list)

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.values[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


class SagaRunner:
    """Execute steps in order; on failure compensate completed steps in reverse."""

    def __init__(
        self,
        name: str,
        steps: Sequence[SagaStep],
        *,
        on_rollback: Callable[[str, str], None] | None = None,
    ) -> None:
        self.name = name
        self.steps = list(steps)
        self.on_rollback = on_rollback

    async def run(self, context: SagaContext | None = None) -> SagaContext:
        """Run the saga; re-raise the original step error after rollback."""
        context = context or SagaContext()
        done: list[SagaStep] = []

        for step in self.steps:
            try:
                await step.action(context)
            except Exception as exc:
                logger.warning(
                    "Saga %s failed at step %s: %s; compensating %d step(s)",
                    self.name,
                    step.name,
                    exc,
                    len(done),
                )
                await self._compensate(done, context)
                if self.on_rollback is not None:
                    self.on_rollback(self.name, step.name)
                raise
            done.append(step)
            context.completed.append(step.name)

        return context

    async def _compensate(self, done: list[SagaStep], context: SagaContext) -> None:
        for step in reversed(done):
            if step.compensation is None:
                continue
            try:
                await step.compensation(context)
                logger.info("Saga %s compensated step %s", self.name, step.name)
            except Exception:
                logger.exception("Saga %s compensation for step %s failed", self.name, step.name)
