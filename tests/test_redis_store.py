from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from bartok.config import RedisSettings
from bartok.errors import StoreUnavailable
from bartok.store import NO_EXPIRY, RedisTokenStore, create_store_from_env, InMemoryTokenStore


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def redis_store(client: MagicMock) -> RedisTokenStore:
    return RedisTokenStore(RedisSettings(), client=client)


def test_set_with_ttl_uses_milliseconds(redis_store, client) -> None:
    redis_store.set_with_ttl("barcode:u1", "v", 420)
    client.set.assert_called_once_with("barcode:u1", "v", px=420_000)


def test_set_without_ttl(redis_store, client) -> None:
    redis_store.set_with_ttl("barcode:u1", "used", None)
    client.set.assert_called_once_with("barcode:u1", "used")


def test_get_decodes_bytes(redis_store, client) -> None:
    client.get.return_value = b"abc"
    assert redis_store.get("k") == "abc"
    client.get.return_value = None
    assert redis_store.get("k") is None


@pytest.mark.parametrize(
    "pttl, expected",
    [(-2, None), (-1, NO_EXPIRY), (1500, 1.5), (420_000, 420.0)],
)
def test_remaining_ttl_maps_pttl(redis_store, client, pttl, expected) -> None:
    client.pttl.return_value = pttl
    assert redis_store.get_remaining_ttl("k") == expected


@pytest.mark.parametrize("exc", [RedisConnectionError("down"), RedisTimeoutError("slow")])
def test_backend_failures_become_store_unavailable(redis_store, client, exc) -> None:
    client.get.side_effect = exc
    client.pttl.side_effect = exc
    client.set.side_effect = exc

    with pytest.raises(StoreUnavailable) as info:
        redis_store.get("k")
    assert info.value.__cause__ is exc

    with pytest.raises(StoreUnavailable):
        redis_store.get_remaining_ttl("k")
    with pytest.raises(StoreUnavailable):
        redis_store.set_with_ttl("k", "v", 10)


def test_replace_keep_ttl_runs_registered_script(redis_store, client) -> None:
    script = MagicMock(return_value=61_000)
    client.register_script.return_value = script

    assert redis_store.replace_keep_ttl("barcode:u1", "used", None) == 61.0
    script.assert_called_once_with(keys=["barcode:u1"], args=["used", 0])

    script.return_value = -2
    assert redis_store.replace_keep_ttl("barcode:u2", "used", 30) is None
    script.assert_called_with(keys=["barcode:u2"], args=["used", 30_000])

    client.register_script.assert_called_once()
    source = client.register_script.call_args[0][0]
    assert "PTTL" in source and "'PX'" in source


def test_replace_keep_ttl_failure(redis_store, client) -> None:
    client.register_script.return_value = MagicMock(side_effect=RedisConnectionError("down"))
    with pytest.raises(StoreUnavailable):
        redis_store.replace_keep_ttl("k", "used", None)


def test_ping(redis_store, client) -> None:
    client.ping.return_value = True
    assert redis_store.ping() is True
    client.ping.side_effect = RedisConnectionError("down")
    assert redis_store.ping() is False


@pytest.mark.parametrize(
    "settings",
    [RedisSettings(port=0), RedisSettings(host=""), RedisSettings(url="not-a-redis-url")],
)
def test_invalid_settings_rejected_at_construction(settings) -> None:
    with pytest.raises(ValueError):
        RedisTokenStore(settings)


def test_malformed_url_fails_store_creation(monkeypatch) -> None:
    monkeypatch.setenv("REDIS_URL", "ftp://cache:6379/0")
    with pytest.raises(ValueError):
        create_store_from_env("redis", "barcode:")


def test_create_store_from_env() -> None:
    assert isinstance(create_store_from_env("memory", "x:"), InMemoryTokenStore)
    store = create_store_from_env("redis", "x:")
    assert isinstance(store, RedisTokenStore)
    assert store.key_for("u1") == "x:u1"
