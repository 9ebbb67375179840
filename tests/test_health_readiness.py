from __future__ import annotations

import pytest
from fastapi import HTTPException

import app.main as main_module
from app.core.realtime import InMemoryChangeFeed


def patch_probes(monkeypatch: pytest.MonkeyPatch, *, database: bool, change_feed: bool) -> None:
    async def _database() -> bool:
        return database

    async def _change_feed() -> bool:
        return change_feed

    monkeypatch.setattr(main_module, "_is_database_ready", _database)
    monkeypatch.setattr(main_module, "_is_change_feed_ready", _change_feed)


@pytest.mark.asyncio
async def test_healthcheck_does_not_touch_dependencies() -> None:
    assert await main_module.healthcheck() == {"status": "ok"}


@pytest.mark.asyncio
async def test_ready_when_database_and_change_feed_answer(monkeypatch: pytest.MonkeyPatch) -> None:
    patch_probes(monkeypatch, database=True, change_feed=True)

    response = await main_module.readiness_check()

    assert response["status"] == "ready"
    assert response["database"] == "ok"
    assert response["change_feed"] == "ok"
    assert "timestamp" in response


@pytest.mark.asyncio
async def test_unreachable_change_feed_only_degrades(monkeypatch: pytest.MonkeyPatch) -> None:
    patch_probes(monkeypatch, database=True, change_feed=False)

    response = await main_module.readiness_check()

    assert response["status"] == "degraded"
    assert response["change_feed"] == "unavailable"


@pytest.mark.asyncio
async def test_unreachable_database_is_503(monkeypatch: pytest.MonkeyPatch) -> None:
    patch_probes(monkeypatch, database=False, change_feed=True)

    with pytest.raises(HTTPException) as exc:
        await main_module.readiness_check()
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_in_memory_change_feed_is_always_reachable() -> None:
    assert await InMemoryChangeFeed().ping() is True
