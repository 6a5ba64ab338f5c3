"""
Flutterwave Bridge -- Rate Limit Store

Abstract counter store used by the webhook gate (per-IP rate limiting) and
the webhook dispatcher (delivery deduplication). The only primitive is an
atomic fixed-window increment: the first hit on a key opens a window of
`window_seconds`; every hit inside the window increments the same counter;
the counter disappears when the window expires.

InMemoryRateLimitStore is process-local. Deployments running several worker
processes must provide a shared implementation of the same interface.
"""

import threading
import time
from abc import ABC, abstractmethod


class RateLimitStoreInterface(ABC):
  """Abstract base for counter stores."""

  @abstractmethod
  def increment(self, key, window_seconds):
    """
    Atomically add one hit to `key` and return the hit count in the current
    window (1 for the first hit). Opens a new window if none is active.
    """
    ...

  @abstractmethod
  def reset(self, key):
    """Forget the counter for `key`."""
    ...


class InMemoryRateLimitStore(RateLimitStoreInterface):
  """Thread-safe in-memory fixed-window counters. Resets on restart."""

  # Expired windows are swept at most this often.
  _SWEEP_INTERVAL_SECONDS = 60

  def __init__(self, clock=time.time):
    self._clock = clock
    self._lock = threading.Lock()
    self._counters_by_key = {}  # key -> [hit_count, window_expires_at]
    self._next_sweep_at = 0

  def increment(self, key, window_seconds):
    with self._lock:
      now = self._clock()
      self._sweep_expired_windows(now)

      counter = self._counters_by_key.get(key)
      if counter is None or now >= counter[1]:
        counter = [0, now + window_seconds]
        self._counters_by_key[key] = counter
      counter[0] += 1
      return counter[0]

  def reset(self, key):
    with self._lock:
      self._counters_by_key.pop(key, None)

  def active_key_count(self):
    with self._lock:
      return len(self._counters_by_key)

  def _sweep_expired_windows(self, now):
    if now < self._next_sweep_at:
      return
    expired_keys = [
      key for key, (_, window_expires_at) in self._counters_by_key.items()
      if now >= window_expires_at
    ]
    for key in expired_keys:
      del self._counters_by_key[key]
    self._next_sweep_at = now + self._SWEEP_INTERVAL_SECONDS
