from __future__ import annotations

import pytest

from app.shared.saga import SagaContext, SagaRunner, SagaStep


class Boom(RuntimeError):
    pass


def make_step(name: str, journal: list[str], *, fail: bool = False, compensation_fails: bool = False) -> SagaStep:
    async def _action(ctx: SagaContext) -> None:
        if fail:
            raise Boom(name)
        ctx[name] = True
        journal.append(f"do:{name}")

    async def _compensate(ctx: SagaContext) -> None:
        if compensation_fails:
            raise RuntimeError(f"undo {name} failed")
        journal.append(f"undo:{name}")

    return SagaStep(name, _action, _compensate)


@pytest.mark.asyncio
async def test_saga_runs_all_steps_in_order() -> None:
    journal: list[str] = []
    runner = SagaRunner("demo", [make_step("a", journal), make_step("b", journal)])

    context = await runner.run()

    assert journal == ["do:a", "do:b"]
    assert context.completed == ["a", "b"]
    assert context["a"] is True


@pytest.mark.asyncio
async def test_saga_compensates_completed_steps_in_reverse_and_reraises() -> None:
    journal: list[str] = []
    rollbacks: list[tuple[str, str]] = []
    runner = SagaRunner(
        "demo",
        [make_step("a", journal), make_step("b", journal), make_step("c", journal, fail=True)],
        on_rollback=lambda saga, step: rollbacks.append((saga, step)),
    )

    with pytest.raises(Boom):
        await runner.run()

    assert journal == ["do:a", "do:b", "undo:b", "undo:a"]
    assert rollbacks == [("demo", "c")]


@pytest.mark.asyncio
async def test_failing_compensation_does_not_stop_remaining_compensations() -> None:
    journal: list[str] = []
    runner = SagaRunner(
        "demo",
        [
            make_step("a", journal),
            make_step("b", journal, compensation_fails=True),
            make_step("c", journal, fail=True),
        ],
    )

    with pytest.raises(Boom):
        await runner.run()

    assert journal == ["do:a", "do:b", "undo:a"]


@pytest.mark.asyncio
async def test_failed_step_itself_is_not_compensated() -> None:
    journal: list[str] = []
    runner = SagaRunner("demo", [make_step("a", journal, fail=True)])

    with pytest.raises(Boom):
        await runner.run()

    assert journal == []
