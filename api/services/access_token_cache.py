"""
Flutterwave Bridge -- OAuth2 Access Token Cache

Holds one bearer token for one API client instance and refreshes it through
a pluggable fetch function (the client_credentials exchange lives in
services.flutterwave_api_client.fetch_client_credentials_token).

  - A token is reused while now < expires_at, where
    expires_at = fetched_at + expires_in - 60s (refresh one minute early).
  - Refresh is single-flight: concurrent callers wait on one asyncio.Lock
    and re-check the cache once they hold it, so one expiry costs one fetch.
  - Transient failures are retried: 1 initial attempt + 3 retries,
    sleeping 1s, 2s, 4s between them.
  - A well-formed but unusable token response is permanent (no retry).

The clock and sleep function are injectable so tests never wait.
"""

import asyncio
import dataclasses
import logging
import time

import httpx

from services.gateway_errors import GatewayAuthFailed, GatewayError

logger = logging.getLogger("fwbridge.token_cache")

TOKEN_EXPIRY_SAFETY_MARGIN_SECONDS = 60
TOKEN_FETCH_MAX_RETRIES = 3
TOKEN_FETCH_INITIAL_BACKOFF_SECONDS = 1.0


@dataclasses.dataclass(frozen=True)
class AccessToken:
  """A bearer token and the instant (epoch seconds) it stops being reused."""

  value: str = dataclasses.field(repr=False)
  expires_at: float

  def is_valid_at(self, now):
    return now < self.expires_at


def _is_transient_token_fetch_error(fetch_error):
  if isinstance(fetch_error, GatewayError):
    return fetch_error.is_retryable
  if isinstance(fetch_error, httpx.TransportError):
    return True
  if isinstance(fetch_error, httpx.HTTPStatusError):
    status_code = fetch_error.response.status_code
    return status_code >= 500 or status_code == 429
  return False


def parse_token_response(token_response, now):
  """
  Validate a token endpoint response and turn it into an AccessToken.
  Raises GatewayAuthFailed (permanent) if it is unusable.
  """
  if not isinstance(token_response, dict):
    raise GatewayAuthFailed("Failed to obtain access token: response is not a JSON object")

  access_token_value = token_response.get("access_token")
  if not isinstance(access_token_value, str) or not access_token_value.strip():
    error_description = token_response.get("error_description") or "Unknown error"
    raise GatewayAuthFailed(f"Failed to obtain access token: {error_description}")

  expires_in = token_response.get("expires_in")
  if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
    raise GatewayAuthFailed("Failed to obtain access token: expires_in is missing or not numeric")

  return AccessToken(
    value=access_token_value,
    expires_at=now + expires_in - TOKEN_EXPIRY_SAFETY_MARGIN_SECONDS,
  )


class AccessTokenCache:
  """Single-token cache with single-flight refresh and bounded retry."""

  def __init__(
    self,
    clock=time.time,
    sleep=asyncio.sleep,
    max_retries=TOKEN_FETCH_MAX_RETRIES,
    initial_backoff_seconds=TOKEN_FETCH_INITIAL_BACKOFF_SECONDS,
  ):
    self._clock = clock
    self._sleep = sleep
    self._max_retries = max_retries
    self._initial_backoff_seconds = initial_backoff_seconds
    self._cached_token = None
    self._refresh_lock = asyncio.Lock()

  @property
  def cached_token(self):
    return self._cached_token

  def invalidate(self):
    """Drop the cached token; the next get_token() call refreshes."""
    self._cached_token = None

  def _current_token_if_valid(self, now):
    cached_token = self._cached_token
    if cached_token is not None and cached_token.is_valid_at(now):
      return cached_token.value
    return None

  async def get_token(self, fetch_token_response, now=None, cancellation_event=None):
    """
    Return a valid bearer token string, refreshing it if needed.

    Args:
      fetch_token_response: async callable returning the token endpoint's
        JSON body as a dict ({"access_token": ..., "expires_in": ...}).
      now: epoch seconds to evaluate validity against (defaults to the clock).
      cancellation_event: optional asyncio.Event; when set, the retry loop
        stops before the next attempt.

    Raises GatewayAuthFailed.
    """
    reference_time = self._clock() if now is None else now
    cached_value = self._current_token_if_valid(reference_time)
    if cached_value is not None:
      return cached_value

    async with self._refresh_lock:
      # Another caller may have refreshed while we waited for the lock.
      reference_time = self._clock() if now is None else now
      cached_value = self._current_token_if_valid(reference_time)
      if cached_value is not None:
        return cached_value

      token_response = await self._fetch_with_retry(fetch_token_response, cancellation_event)

      issued_at = self._clock() if now is None else now
      refreshed_token = parse_token_response(token_response, issued_at)
      self._cached_token = refreshed_token

      logger.info(
        "Flutterwave OAuth2 token refreshed (expires_in=%s)",
        token_response.get("expires_in"),
      )
      return refreshed_token.value

  async def _fetch_with_retry(self, fetch_token_response, cancellation_event):
    backoff_seconds = self._initial_backoff_seconds
    last_fetch_error = None

    for attempt_number in range(1, self._max_retries + 2):
      _raise_if_cancelled(cancellation_event)

      try:
        return await fetch_token_response()
      except GatewayAuthFailed:
        raise
      except (GatewayError, httpx.HTTPError) as fetch_error:
        if not _is_transient_token_fetch_error(fetch_error):
          raise GatewayAuthFailed(
            f"Failed to authenticate with Flutterwave: {fetch_error}",
            _status_code_of(fetch_error),
          ) from fetch_error
        last_fetch_error = fetch_error

      if attempt_number > self._max_retries:
        break

      logger.warning(
        "Flutterwave token fetch failed (attempt %d of %d), retrying in %.1fs: %s",
        attempt_number, self._max_retries + 1, backoff_seconds, last_fetch_error,
      )
      _raise_if_cancelled(cancellation_event)
      await self._sleep(backoff_seconds)
      backoff_seconds *= 2

    logger.error(
      "Flutterwave token fetch gave up after %d attempts: %s",
      self._max_retries + 1, last_fetch_error,
    )
    raise GatewayAuthFailed(
      f"Failed to authenticate with Flutterwave: {last_fetch_error}",
      _status_code_of(last_fetch_error),
    ) from last_fetch_error


def _status_code_of(fetch_error):
  if isinstance(fetch_error, httpx.HTTPStatusError):
    return fetch_error.response.status_code
  return getattr(fetch_error, "status_code", 0)


def _raise_if_cancelled(cancellation_event):
  if cancellation_event is not None and cancellation_event.is_set():
    raise GatewayAuthFailed("Flutterwave token refresh cancelled")
