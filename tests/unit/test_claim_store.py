"""Testes unitários para infra/claim_store.py.

Valida stores de claims (memória e Redis mockado) e a factory.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from dedup_window.config.settings import Settings
from dedup_window.infra.claim_store import (
    ClaimStoreError,
    InMemoryClaimStore,
    RedisClaimStore,
    create_claim_store,
)


class TestInMemoryClaimStore:
    """Testes para InMemoryClaimStore."""

    def test_claim_returns_true_for_new_key(self, fake_clock) -> None:
        """Chave nova deve retornar True (claim criado)."""
        store = InMemoryClaimStore(clock=fake_clock)
        assert store.claim("5", 60) is True

    def test_claim_returns_false_for_existing_key(self, fake_clock) -> None:
        """Chave existente deve retornar False (duplicado)."""
        store = InMemoryClaimStore(clock=fake_clock)
        store.claim("5", 60)
        assert store.claim("5", 60) is False

    def test_claim_is_new_again_after_ttl(self, fake_clock) -> None:
        """Após o TTL o identificador volta a ser único."""
        store = InMemoryClaimStore(clock=fake_clock)
        store.claim("5", 60)

        fake_clock.advance(59)
        assert store.claim("5", 60) is False

        fake_clock.advance(1)
        assert store.claim("5", 60) is True

    def test_snapshot_and_count_ignore_expired(self, fake_clock) -> None:
        """Claims expirados não aparecem em snapshot/count."""
        store = InMemoryClaimStore(clock=fake_clock)
        store.claim("1", 10)
        store.claim("2", 60)

        fake_clock.advance(30)

        assert set(store.snapshot()) == {"2"}
        assert store.count() == 1

    def test_release_removes_only_enumerated_claims(self, fake_clock) -> None:
        """release remove o snapshot e preserva claims posteriores."""
        store = InMemoryClaimStore(clock=fake_clock)
        store.claim("1", 60)
        store.claim("2", 60)
        snapshot = store.snapshot()

        store.claim("9", 60)

        assert store.release(snapshot) == 2
        assert set(store.snapshot()) == {"9"}

    def test_release_keeps_claim_recreated_with_new_token(self, fake_clock) -> None:
        """Claim expirado e recriado após a enumeração não é removido."""
        store = InMemoryClaimStore(clock=fake_clock)
        store.claim("1", 10)
        snapshot = store.snapshot()

        fake_clock.advance(10)
        assert store.claim("1", 60) is True

        assert store.release(snapshot) == 0
        assert store.count() == 1

    def test_release_empty_snapshot(self, fake_clock) -> None:
        """Snapshot vazio não remove nada."""
        store = InMemoryClaimStore(clock=fake_clock)
        store.claim("1", 60)
        assert store.release({}) == 0
        assert store.count() == 1

    def test_concurrent_claims_same_key_single_winner(self) -> None:
        """Claims concorrentes do mesmo identificador: exatamente um True."""
        store = InMemoryClaimStore()
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda _: store.claim("42", 60), range(64)))

        assert results.count(True) == 1
        assert results.count(False) == 63

    def test_concurrent_claims_disjoint_keys_all_win(self) -> None:
        """Claims concorrentes de identificadores distintos: todos True."""
        store = InMemoryClaimStore()
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda i: store.claim(str(i), 60), range(200)))

        assert all(results)
        assert store.count() == 200


class TestRedisClaimStore:
    """Testes para RedisClaimStore com cliente mockado."""

    @pytest.fixture
    def redis_client(self) -> MagicMock:
        return MagicMock()

    def test_claim_uses_set_nx_with_ttl(self, redis_client: MagicMock) -> None:
        """claim deve usar SET NX EX sob o prefixo de claims."""
        redis_client.set.return_value = True
        store = RedisClaimStore(redis_client, key_prefix="claim:")

        assert store.claim("5", 60) is True

        args, kwargs = redis_client.set.call_args
        assert args[0] == "claim:5"
        assert isinstance(args[1], str) and len(args[1]) == 32
        assert kwargs == {"nx": True, "ex": 60}

    def test_claim_returns_false_for_duplicate(self, redis_client: MagicMock) -> None:
        """SET NX retorna None quando a chave já existe."""
        redis_client.set.return_value = None
        store = RedisClaimStore(redis_client)
        assert store.claim("5", 60) is False

    def test_claim_tokens_are_unique(self, redis_client: MagicMock) -> None:
        """Cada claim grava um token distinto."""
        redis_client.set.return_value = True
        store = RedisClaimStore(redis_client)
        store.claim("1", 60)
        store.claim("2", 60)

        tokens = [c.args[1] for c in redis_client.set.call_args_list]
        assert tokens[0] != tokens[1]

    def test_claim_error_raises_claim_store_error(self, redis_client: MagicMock) -> None:
        """Falha de Redis vira ClaimStoreError."""
        redis_client.set.side_effect = RedisConnectionError("down")
        store = RedisClaimStore(redis_client)

        with pytest.raises(ClaimStoreError):
            store.claim("5", 60)

    def test_snapshot_scans_only_claim_namespace(self, redis_client: MagicMock) -> None:
        """snapshot usa SCAN MATCH no prefixo e ignora chaves sumidas."""
        redis_client.scan_iter.return_value = iter(["claim:1", "claim:2", "claim:1"])
        redis_client.mget.return_value = ["t1", None]
        store = RedisClaimStore(redis_client, key_prefix="claim:", scan_batch_size=500)

        assert store.snapshot() == {"claim:1": "t1"}
        redis_client.scan_iter.assert_called_once_with(match="claim:*", count=500)
        redis_client.mget.assert_called_once_with(["claim:1", "claim:2"])

    def test_snapshot_error_raises_claim_store_error(self, redis_client: MagicMock) -> None:
        """Falha no SCAN vira ClaimStoreError."""
        redis_client.scan_iter.side_effect = RedisConnectionError("down")
        store = RedisClaimStore(redis_client)

        with pytest.raises(ClaimStoreError):
            store.snapshot()

    def test_release_runs_compare_and_delete_script(self, redis_client: MagicMock) -> None:
        """release chama o script Lua com chaves e tokens pareados."""
        script = MagicMock(return_value=2)
        redis_client.register_script.return_value = script
        store = RedisClaimStore(redis_client)

        deleted = store.release({"claim:1": "t1", "claim:2": "t2"})

        assert deleted == 2
        script.assert_called_once_with(keys=["claim:1", "claim:2"], args=["t1", "t2"])

    def test_release_is_chunked_by_batch_size(self, redis_client: MagicMock) -> None:
        """Snapshots grandes são removidos em lotes."""
        script = MagicMock(side_effect=lambda keys, args: len(keys))
        redis_client.register_script.return_value = script
        store = RedisClaimStore(redis_client, scan_batch_size=2)

        deleted = store.release({f"claim:{i}": f"t{i}" for i in range(5)})

        assert deleted == 5
        assert script.call_count == 3

    def test_release_empty_snapshot_skips_redis(self, redis_client: MagicMock) -> None:
        """Snapshot vazio não chama o Redis."""
        script = MagicMock()
        redis_client.register_script.return_value = script
        store = RedisClaimStore(redis_client)

        assert store.release({}) == 0
        script.assert_not_called()

    def test_release_error_raises_claim_store_error(self, redis_client: MagicMock) -> None:
        """Falha no script vira ClaimStoreError."""
        redis_client.register_script.return_value = MagicMock(
            side_effect=RedisConnectionError("down")
        )
        store = RedisClaimStore(redis_client)

        with pytest.raises(ClaimStoreError):
            store.release({"claim:1": "t1"})

    def test_count_uses_scan(self, redis_client: MagicMock) -> None:
        """count retorna o número de chaves distintas do namespace."""
        redis_client.scan_iter.return_value = iter(["claim:1", "claim:2", "claim:2"])
        store = RedisClaimStore(redis_client)
        assert store.count() == 2

    def test_ping_error_raises_claim_store_error(self, redis_client: MagicMock) -> None:
        """Ping falho indica store inalcançável."""
        redis_client.ping.side_effect = RedisConnectionError("down")
        store = RedisClaimStore(redis_client)

        with pytest.raises(ClaimStoreError):
            store.ping()


class TestCreateClaimStore:
    """Testes para a factory create_claim_store."""

    def test_memory_backend(self) -> None:
        store = create_claim_store(Settings(claim_store_backend="memory"))
        assert isinstance(store, InMemoryClaimStore)

    def test_redis_backend_uses_host_and_port(self) -> None:
        settings = Settings(
            claim_store_backend="redis",
            redis_host="cache",
            redis_port=6380,
            claim_key_prefix="ids:",
        )
        with patch("dedup_window.infra.claim_store.redis") as redis_module:
            store = create_claim_store(settings)

        assert isinstance(store, RedisClaimStore)
        kwargs = redis_module.Redis.call_args.kwargs
        assert kwargs["host"] == "cache"
        assert kwargs["port"] == 6380
        assert kwargs["decode_responses"] is True
        assert store._make_key("7") == "ids:7"

    def test_redis_backend_prefers_url(self) -> None:
        settings = Settings(claim_store_backend="redis", redis_url="redis://cache:6379/1")
        with patch("dedup_window.infra.claim_store.redis") as redis_module:
            create_claim_store(settings)

        redis_module.from_url.assert_called_once()
        assert redis_module.from_url.call_args.args[0] == "redis://cache:6379/1"
        redis_module.Redis.assert_not_called()

    def test_unknown_backend_raises(self) -> None:
        with pytest.raises(ValueError):
            create_claim_store(Settings(claim_store_backend="memcached"))
