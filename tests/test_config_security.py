from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi import HTTPException
from jose import jwt
from pydantic import ValidationError

from app.core.config import Settings
from app.core.enums import RoleEnum
from app.core.security import create_access_token, decode_token, principal_from_claims


def test_default_secret_key_allowed_in_development() -> None:
    settings = Settings(_env_file=None, app_env="development", secret_key="change-me")
    assert settings.secret_key == "change-me"


def test_default_secret_key_rejected_in_production() -> None:
    with pytest.raises(ValidationError):
        Settings(
            _env_file=None,
            app_env="production",
            secret_key="change-me",
            realtime_allow_in_memory_in_production=True,
        )


def test_in_memory_change_feed_requires_explicit_ack_in_production() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, app_env="production", secret_key="super-secure-value")


def test_redis_backend_requires_url() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, realtime_backend="REDIS")

    settings = Settings(_env_file=None, realtime_backend="Redis", redis_url="redis://localhost:6379/0")
    assert settings.realtime_backend == "redis"


def test_grace_period_must_be_shorter_than_shortest_session() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, allowed_durations_minutes="5,30", session_grace_period_seconds=300)


def test_integer_lists_parse_from_comma_separated_values() -> None:
    settings = Settings(
        _env_file=None,
        allowed_durations_minutes="15, 30,60",
        session_warning_thresholds_seconds="600,60",
    )
    assert settings.allowed_durations_minutes == (15, 30, 60)
    assert settings.session_warning_thresholds_seconds == (600, 60)


def test_payee_share_out_of_range_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, payee_share_percent=120)


def test_access_token_round_trips_into_principal() -> None:
    account_id = uuid4()
    token = create_access_token(str(account_id), role=RoleEnum.ADMIN.value)

    principal = principal_from_claims(decode_token(token))

    assert principal.id == account_id
    assert principal.is_admin


def test_claims_without_access_type_are_rejected() -> None:
    with pytest.raises(HTTPException) as exc:
        principal_from_claims({"sub": str(uuid4()), "type": "refresh"})
    assert exc.value.status_code == 401


def test_token_signed_with_another_key_is_rejected() -> None:
    token = jwt.encode({"sub": str(uuid4()), "type": "access"}, "another-secret-key", algorithm="HS256")

    with pytest.raises(HTTPException):
        decode_token(token)
