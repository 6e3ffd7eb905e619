from __future__ import annotations

import pytest
from jose import jwt

from caseflow.core.config import Settings, settings
from caseflow.core.exceptions import NotAuthenticatedError
from caseflow.core.security import create_access_token, decode_access_token


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults_are_usable_in_development():
    s = make_settings()

    assert s.POINTER_SELF_HEAL is True
    assert s.ORG_HIERARCHY_MAX_DEPTH == 32
    assert s.bootstrap_super_admin_emails == []


def test_production_rejects_placeholder_secret():
    with pytest.raises(ValueError):
        make_settings(ENVIRONMENT="production")

    with pytest.raises(ValueError):
        make_settings(ENVIRONMENT="staging", JWT_SECRET="short")

    ok = make_settings(ENVIRONMENT="production", JWT_SECRET="x" * 40)
    assert ok.ENVIRONMENT == "production"


def test_only_hs256_is_accepted():
    with pytest.raises(ValueError):
        make_settings(JWT_ALGORITHM="none")


def test_hierarchy_depth_must_be_positive():
    with pytest.raises(ValueError):
        make_settings(ORG_HIERARCHY_MAX_DEPTH=0)


def test_comma_separated_lists_are_normalized():
    s = make_settings(
        BOOTSTRAP_SUPER_ADMIN_EMAILS=" Root@Example.com, ,ops@example.com ",
        CORS_ALLOW_ORIGINS="https://app.example.com, https://admin.example.com",
    )

    assert s.bootstrap_super_admin_emails == ["root@example.com", "ops@example.com"]
    assert s.cors_allow_origins == ["https://app.example.com", "https://admin.example.com"]


def test_asyncpg_unsupported_params_are_stripped():
    s = make_settings(DATABASE_URL_ASYNC="postgresql+asyncpg://u:p@db/caseflow?sslmode=require&application_name=api")

    assert s.DATABASE_URL_ASYNC_CLEAN == "postgresql+asyncpg://u:p@db/caseflow?application_name=api"


def test_token_roundtrip():
    token = create_access_token("user-1", " Someone@Example.com ")

    identity = decode_access_token(f'"Bearer {token}"\n')

    assert identity.user_id == "user-1"
    assert identity.email == "someone@example.com"


@pytest.mark.parametrize(
    "token",
    [
        "",
        "not-a-jwt",
        jwt.encode({"sub": "user-1", "exp": 4102444800}, "some-other-secret", algorithm="HS256"),
        jwt.encode({"email": "x@example.com", "exp": 4102444800}, settings.JWT_SECRET, algorithm="HS256"),
    ],
)
def test_invalid_tokens_raise_not_authenticated(token):
    with pytest.raises(NotAuthenticatedError):
        decode_access_token(token)


def test_expired_token_is_rejected():
    token = create_access_token("user-1", "a@example.com", expires_minutes=-5)

    with pytest.raises(NotAuthenticatedError):
        decode_access_token(token)


def test_pool_settings_have_defaults_and_env_overrides():
    s = make_settings()
    tuned = make_settings(DB_POOL_SIZE=3, DB_MAX_OVERFLOW=0, DB_POOL_RECYCLE_SECONDS=60)

    assert (s.DB_ECHO, s.DB_POOL_SIZE, s.DB_MAX_OVERFLOW, s.DB_POOL_RECYCLE_SECONDS) == (False, 10, 20, 300)
    assert (tuned.DB_POOL_SIZE, tuned.DB_MAX_OVERFLOW, tuned.DB_POOL_RECYCLE_SECONDS) == (3, 0, 60)


def test_engine_pool_follows_settings():
    from caseflow.db.session import engine

    pool = engine.sync_engine.pool
    assert pool.size() == settings.DB_POOL_SIZE
    assert pool._recycle == settings.DB_POOL_RECYCLE_SECONDS
    assert pool._pre_ping is True
