import time

import pytest

from trader.rate_limit_policy import RateLimitManager, RateLimitQuota, RateLimitState


def test_rate_limit_quota_allow_within_limit():
    quota = RateLimitQuota(requests_per_window=3, window_seconds=1)
    state = RateLimitState(quota=quota)

    for _ in range(3):
        assert state.is_allowed()
        state.record_request()
    assert not state.is_allowed()


def test_rate_limit_quota_window_reset():
    quota = RateLimitQuota(requests_per_window=2, window_seconds=0.1)
    state = RateLimitState(quota=quota)

    state.record_request()
    state.record_request()
    assert not state.is_allowed()

    time.sleep(0.15)
    assert state.is_allowed()


def test_rate_limit_manager_per_endpoint():
    manager = RateLimitManager()

    # set-leverage is 5 req/sec
    for _ in range(5):
        assert manager.is_allowed("/api/v2/mix/account/set-leverage")
        manager.record_request("/api/v2/mix/account/set-leverage")
    assert not manager.is_allowed("/api/v2/mix/account/set-leverage")

    # unknown endpoints use default (20 req/sec)
    for _ in range(20):
        assert manager.is_allowed("/unknown")
        manager.record_request("/unknown")
    assert not manager.is_allowed("/unknown")


def test_from_config_overrides_order_and_default_quotas():
    manager = RateLimitManager.from_config(orders_per_second=2, default_per_second=3)
    assert manager.quotas["/api/v2/mix/order/place-order"].requests_per_window == 2
    assert manager.quotas["/api/v2/mix/order/place-pos-tpsl"].requests_per_window == 2
    assert manager.quotas["default"].requests_per_window == 3
    assert manager.quotas["/api/v2/mix/account/set-leverage"].requests_per_window == 5


def test_time_until_allowed():
    quota = RateLimitQuota(requests_per_window=1, window_seconds=0.2)
    state = RateLimitState(quota=quota)

    state.record_request()
    assert not state.is_allowed()

    wait_time = state.time_until_allowed()
    assert 0 < wait_time <= 0.2


@pytest.mark.asyncio
async def test_acquire_allows_immediately():
    manager = RateLimitManager(
        quotas={"/test": RateLimitQuota(requests_per_window=5, window_seconds=1)}
    )

    start = time.monotonic()
    assert await manager.acquire("/test")
    assert time.monotonic() - start < 0.05
    assert len(manager.states["/test"].request_times) == 1


@pytest.mark.asyncio
async def test_acquire_waits_and_allows():
    manager = RateLimitManager(
        quotas={"/test": RateLimitQuota(requests_per_window=1, window_seconds=0.1)}
    )
    manager.record_request("/test")

    start = time.monotonic()
    assert await manager.acquire("/test", max_wait=0.5)
    assert time.monotonic() - start >= 0.09


@pytest.mark.asyncio
async def test_acquire_gives_up_past_max_wait():
    manager = RateLimitManager(
        quotas={"/test": RateLimitQuota(requests_per_window=1, window_seconds=1.0)}
    )
    manager.record_request("/test")

    start = time.monotonic()
    assert not await manager.acquire("/test", max_wait=0.05)
    assert time.monotonic() - start < 0.2
