"""
Unit tests for access_token_cache.py -- OAuth2 token reuse, refresh and retry.

Tests cover:
  1. parse_token_response validation and the 60s early-expiry margin
  2. Reuse while valid, refresh once expired
  3. Retry with exponential backoff on transient failures (1s, 2s, 4s)
  4. No retry on permanent failures
  5. Single-flight refresh under concurrent callers
  6. Cancellation between attempts

The clock and sleep are injected, so nothing here waits in real time.

Run with: python -m pytest tests/test_access_token_cache.py -v
"""

import asyncio
import os
import sys

import httpx
import pytest

# Add the api directory to the path so we can import services
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from services.access_token_cache import AccessToken, AccessTokenCache, parse_token_response
from services.gateway_errors import GatewayApiError, GatewayAuthFailed, GatewayTransportError


class FakeClock:
  def __init__(self, now=1_700_000_000.0):
    self.now = now

  def __call__(self):
    return self.now


class RecordingSleep:
  def __init__(self):
    self.delays = []

  async def __call__(self, delay_seconds):
    self.delays.append(delay_seconds)


class ScriptedFetch:
  """Async token fetch that replays a list of outcomes (exceptions are raised)."""

  def __init__(self, outcomes):
    self.outcomes = list(outcomes)
    self.call_count = 0

  async def __call__(self):
    self.call_count += 1
    outcome = self.outcomes.pop(0)
    if isinstance(outcome, BaseException):
      raise outcome
    return outcome


def _token_response(value="tok-1", expires_in=3600):
  return {"access_token": value, "expires_in": expires_in, "token_type": "Bearer"}


def _new_cache(clock=None):
  sleep = RecordingSleep()
  cache = AccessTokenCache(clock=clock or FakeClock(), sleep=sleep)
  return cache, sleep


# ===================================================================
# 1. parse_token_response
# ===================================================================

class TestParseTokenResponse:

  def test_expiry_is_sixty_seconds_early(self):
    token = parse_token_response(_token_response(expires_in=3600), now=1000)
    assert token.value == "tok-1"
    assert token.expires_at == 1000 + 3600 - 60

  def test_missing_access_token_is_auth_failure(self):
    with pytest.raises(GatewayAuthFailed) as raised:
      parse_token_response({"error_description": "invalid_client"}, now=0)
    assert "invalid_client" in raised.value.message

  def test_empty_access_token_is_auth_failure(self):
    with pytest.raises(GatewayAuthFailed):
      parse_token_response({"access_token": "  ", "expires_in": 3600}, now=0)

  @pytest.mark.parametrize("expires_in", [None, "3600", True])
  def test_non_numeric_expires_in_is_auth_failure(self, expires_in):
    with pytest.raises(GatewayAuthFailed):
      parse_token_response({"access_token": "tok", "expires_in": expires_in}, now=0)

  @pytest.mark.parametrize("token_response", [None, [], "tok"])
  def test_non_mapping_is_auth_failure(self, token_response):
    with pytest.raises(GatewayAuthFailed):
      parse_token_response(token_response, now=0)

  def test_token_value_hidden_from_repr(self):
    token = AccessToken(value="super-secret-token", expires_at=10)
    assert "super-secret-token" not in repr(token)


# ===================================================================
# 2. reuse and refresh
# ===================================================================

class TestTokenReuse:

  def test_valid_token_reused_without_fetch(self):
    clock = FakeClock(now=0)
    cache, _ = _new_cache(clock)
    fetch = ScriptedFetch([_token_response("tok-1", 3600)])

    async def scenario():
      first = await cache.get_token(fetch)
      clock.now = 3539  # expires_at = 3540
      second = await cache.get_token(fetch)
      return first, second

    assert asyncio.run(scenario()) == ("tok-1", "tok-1")
    assert fetch.call_count == 1

  def test_expired_token_refreshed(self):
    clock = FakeClock(now=0)
    cache, _ = _new_cache(clock)
    fetch = ScriptedFetch([_token_response("tok-1", 3600), _token_response("tok-2", 3600)])

    async def scenario():
      first = await cache.get_token(fetch)
      clock.now = 3540
      second = await cache.get_token(fetch)
      return first, second

    assert asyncio.run(scenario()) == ("tok-1", "tok-2")
    assert fetch.call_count == 2

  def test_ten_minute_token_reused_for_539_seconds(self):
    cache, _ = _new_cache()
    fetch = ScriptedFetch([_token_response("tok1", 600), _token_response("tok2", 600)])

    async def scenario():
      first = await cache.get_token(fetch, now=1000)
      second = await cache.get_token(fetch, now=1539)
      return first, second

    assert asyncio.run(scenario()) == ("tok1", "tok1")
    assert fetch.call_count == 1

  def test_ten_minute_token_refreshed_after_540_seconds(self):
    cache, _ = _new_cache()
    fetch = ScriptedFetch([_token_response("tok1", 600), _token_response("tok2", 600)])

    async def scenario():
      first = await cache.get_token(fetch, now=1000)
      second = await cache.get_token(fetch, now=1540)
      return first, second

    assert asyncio.run(scenario()) == ("tok1", "tok2")
    assert fetch.call_count == 2

  def test_explicit_now_overrides_clock(self):
    cache, _ = _new_cache(FakeClock(now=0))
    fetch = ScriptedFetch([_token_response("tok-1", 120)])
    asyncio.run(cache.get_token(fetch, now=0))
    assert cache.cached_token.expires_at == 60
    assert cache.cached_token.is_valid_at(59) is True
    assert cache.cached_token.is_valid_at(60) is False

  def test_invalidate_forces_refresh(self):
    cache, _ = _new_cache()
    fetch = ScriptedFetch([_token_response("tok-1"), _token_response("tok-2")])

    async def scenario():
      await cache.get_token(fetch)
      cache.invalidate()
      return await cache.get_token(fetch)

    assert asyncio.run(scenario()) == "tok-2"
    assert fetch.call_count == 2


# ===================================================================
# 3. retry on transient failures
# ===================================================================

class TestTransientRetry:

  def test_three_transient_failures_then_success(self):
    cache, sleep = _new_cache()
    fetch = ScriptedFetch([
      GatewayTransportError("connect failed", 0),
      GatewayApiError("bad gateway", 502),
      GatewayApiError("slow down", 429),
      _token_response("tok-after-retries"),
    ])

    token = asyncio.run(cache.get_token(fetch))

    assert token == "tok-after-retries"
    assert fetch.call_count == 4
    assert sleep.delays == [1.0, 2.0, 4.0]

  def test_gives_up_after_four_attempts(self):
    cache, sleep = _new_cache()
    fetch = ScriptedFetch([GatewayTransportError("down", 0) for _ in range(5)])

    with pytest.raises(GatewayAuthFailed) as raised:
      asyncio.run(cache.get_token(fetch))

    assert fetch.call_count == 4
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert isinstance(raised.value.__cause__, GatewayTransportError)
    assert cache.cached_token is None

  def test_network_failure_after_forced_expiry(self):
    cache, sleep = _new_cache()
    network_error = httpx.ConnectError("network unreachable")
    fetch = ScriptedFetch([_token_response("tok1", 600)] + [network_error] * 4)

    async def scenario():
      assert await cache.get_token(fetch) == "tok1"
      cache.invalidate()
      await cache.get_token(fetch)

    with pytest.raises(GatewayAuthFailed) as raised:
      asyncio.run(scenario())

    assert fetch.call_count == 5
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert raised.value.__cause__ is network_error

  def test_raw_httpx_transport_error_is_transient(self):
    cache, sleep = _new_cache()
    fetch = ScriptedFetch([httpx.ConnectTimeout("timed out"), _token_response("tok")])
    assert asyncio.run(cache.get_token(fetch)) == "tok"
    assert sleep.delays == [1.0]


# ===================================================================
# 4. permanent failures
# ===================================================================

class TestPermanentFailure:

  def test_client_error_not_retried(self):
    cache, sleep = _new_cache()
    fetch = ScriptedFetch([GatewayApiError("invalid_client", 401)])

    with pytest.raises(GatewayAuthFailed) as raised:
      asyncio.run(cache.get_token(fetch))

    assert fetch.call_count == 1
    assert sleep.delays == []
    assert raised.value.status_code == 401

  def test_unusable_token_body_not_retried(self):
    cache, sleep = _new_cache()
    fetch = ScriptedFetch([{"token_type": "Bearer"}])

    with pytest.raises(GatewayAuthFailed):
      asyncio.run(cache.get_token(fetch))

    assert fetch.call_count == 1
    assert sleep.delays == []

  def test_non_json_body_not_retried(self):
    cache, _ = _new_cache()
    fetch = ScriptedFetch([None])
    with pytest.raises(GatewayAuthFailed):
      asyncio.run(cache.get_token(fetch))
    assert fetch.call_count == 1


# ===================================================================
# 5. single-flight
# ===================================================================

class TestSingleFlightRefresh:

  def test_concurrent_callers_share_one_fetch(self):
    cache, _ = _new_cache()
    fetch_calls = []

    async def slow_fetch():
      fetch_calls.append(1)
      await asyncio.sleep(0.01)
      return _token_response("shared-token")

    async def scenario():
      return await asyncio.gather(*(cache.get_token(slow_fetch) for _ in range(10)))

    tokens = asyncio.run(scenario())

    assert tokens == ["shared-token"] * 10
    assert len(fetch_calls) == 1


# ===================================================================
# 6. cancellation
# ===================================================================

class TestCancellation:

  def test_already_cancelled_makes_no_attempt(self):
    cache, _ = _new_cache()
    fetch = ScriptedFetch([_token_response()])

    async def scenario():
      cancellation_event = asyncio.Event()
      cancellation_event.set()
      await cache.get_token(fetch, cancellation_event=cancellation_event)

    with pytest.raises(GatewayAuthFailed) as raised:
      asyncio.run(scenario())
    assert "cancelled" in raised.value.message
    assert fetch.call_count == 0

  def test_cancelled_during_backoff_stops_retrying(self):
    async def scenario():
      cancellation_event = asyncio.Event()

      async def cancelling_sleep(delay_seconds):
        cancellation_event.set()

      cache = AccessTokenCache(clock=FakeClock(), sleep=cancelling_sleep)
      fetch = ScriptedFetch([GatewayTransportError("down", 0), _token_response()])
      try:
        await cache.get_token(fetch, cancellation_event=cancellation_event)
      finally:
        assert fetch.call_count == 1

    with pytest.raises(GatewayAuthFailed):
      asyncio.run(scenario())
