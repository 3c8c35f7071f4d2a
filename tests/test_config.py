import pytest

from bartok.config import RedisSettings, TokenPolicy


def test_policy_defaults() -> None:
    policy = TokenPolicy()
    policy.validate()
    assert policy.active_window_seconds == 300
    assert policy.grace_buffer_seconds == 120
    assert policy.total_ttl_seconds == 420
    assert policy.key_prefix == "barcode:"
    assert policy.orphan_marker_ttl_seconds is None
    assert policy.atomic_consume is True


def test_policy_from_env(monkeypatch) -> None:
    monkeypatch.setenv("BARTOK_ACTIVE_WINDOW_SECONDS", "60")
    monkeypatch.setenv("BARTOK_GRACE_BUFFER_SECONDS", "15")
    monkeypatch.setenv("BARTOK_KEY_PREFIX", "ticket:")
    monkeypatch.setenv("BARTOK_ORPHAN_MARKER_TTL_SECONDS", "600")
    monkeypatch.setenv("BARTOK_ATOMIC_CONSUME", "off")

    policy = TokenPolicy.from_env()

    assert policy == TokenPolicy(
        active_window_seconds=60,
        grace_buffer_seconds=15,
        key_prefix="ticket:",
        orphan_marker_ttl_seconds=600,
        atomic_consume=False,
    )
    assert policy.total_ttl_seconds == 75


@pytest.mark.parametrize("raw", ["", "none", "None"])
def test_orphan_ttl_unset_means_no_expiry(monkeypatch, raw) -> None:
    monkeypatch.setenv("BARTOK_ORPHAN_MARKER_TTL_SECONDS", raw)
    assert TokenPolicy.from_env().orphan_marker_ttl_seconds is None


@pytest.mark.parametrize("raw", ["0", "-5"])
def test_non_positive_orphan_ttl_from_env_rejected(monkeypatch, raw) -> None:
    monkeypatch.setenv("BARTOK_ORPHAN_MARKER_TTL_SECONDS", raw)
    policy = TokenPolicy.from_env()
    assert policy.orphan_marker_ttl_seconds == int(raw)
    with pytest.raises(ValueError):
        policy.validate()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"active_window_seconds": 0},
        {"active_window_seconds": -5},
        {"grace_buffer_seconds": -1},
        {"key_prefix": ""},
        {"orphan_marker_ttl_seconds": 0},
    ],
)
def test_policy_validation(kwargs) -> None:
    with pytest.raises(ValueError):
        TokenPolicy(**kwargs).validate()


def test_zero_grace_buffer_allowed() -> None:
    TokenPolicy(grace_buffer_seconds=0).validate()


def test_redis_settings_from_env(monkeypatch) -> None:
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.setenv("REDIS_HOST", "cache")
    monkeypatch.setenv("REDIS_PORT", "6380")
    monkeypatch.setenv("REDIS_DB", "2")
    monkeypatch.setenv("REDIS_PASSWORD", "pw")

    settings = RedisSettings.from_env()

    assert (settings.host, settings.port, settings.db, settings.password) == ("cache", 6380, 2, "pw")
    assert settings.url is None
    settings.validate()


def test_redis_settings_validation() -> None:
    with pytest.raises(ValueError):
        RedisSettings(host="").validate()
    with pytest.raises(ValueError):
        RedisSettings(port=70000).validate()
    with pytest.raises(ValueError):
        RedisSettings(max_connections=0).validate()
    RedisSettings(url="redis://localhost:6379/0", port=0).validate()
