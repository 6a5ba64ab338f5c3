"""
Flutterwave Bridge -- Webhook Admission Gate

Five ordered checks applied to every inbound Flutterwave callback before its
body is even parsed. The first failing stage decides the outcome; later
stages never run.

  1. size        -- Content-Length (or actual body) above webhook_max_size -> 413
  2. source IP   -- not in webhook_allowed_ips (exact or CIDR)             -> 401
                    (empty allow-list admits everyone -- insecure default)
  3. rate limit  -- more than webhook_rate_limit hits per IP per 60s      -> 429
  4. timestamp   -- X-Flutterwave-Timestamp more than 300s from now       -> 401
                    (missing header is tolerated and logged)
  5. signature   -- verif-hash header vs configured secret hash           -> 401
                    (no configured hash                                   -> 500)

The gate works on a framework-neutral WebhookRequestDescriptor and returns an
AdmissionDecision value. It never raises: an unexpected failure inside a
stage (e.g. the counter store is down) becomes Reject(500).
"""

import dataclasses
import hmac
import ipaddress
import logging
import time
from typing import Mapping, Optional

import config
from services.rate_limit_store import InMemoryRateLimitStore

logger = logging.getLogger("fwbridge.webhook_gate")

RATE_LIMIT_KEY_PREFIX = "flutterwave-webhook:"


@dataclasses.dataclass(frozen=True)
class WebhookRequestDescriptor:
  """What the gate needs to know about one inbound request."""

  headers: Mapping[str, str]
  body: bytes = b""
  source_ip: str = ""

  @classmethod
  def from_raw(cls, headers, body=b"", source_ip=""):
    """Normalize header names to lowercase."""
    normalized_headers = {str(name).lower(): value for name, value in dict(headers or {}).items()}
    return cls(headers=normalized_headers, body=body or b"", source_ip=source_ip or "")

  def header(self, name, default=None):
    return self.headers.get(name.lower(), default)

  @property
  def user_agent(self):
    return self.header("user-agent", "")


@dataclasses.dataclass(frozen=True)
class AdmissionDecision:
  """Accept, or Reject with the HTTP status and error code to answer with."""

  accepted: bool
  http_status: int = 200
  error_code: Optional[str] = None
  reason: Optional[str] = None

  @classmethod
  def accept(cls):
    return cls(accepted=True)

  @classmethod
  def reject(cls, http_status, error_code, reason):
    return cls(accepted=False, http_status=http_status, error_code=error_code, reason=reason)

  def to_response_content(self):
    """The JSON error envelope sent back for a rejection."""
    return {
      "ok": False,
      "data": None,
      "error": {"code": self.error_code, "message": self.reason},
    }


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def _parse_ip_address(raw_ip):
  parsed_ip = ipaddress.ip_address(raw_ip.strip())
  if parsed_ip.version == 6 and parsed_ip.ipv4_mapped is not None:
    return parsed_ip.ipv4_mapped
  return parsed_ip


def ip_in_cidr_range(client_ip, cidr_range):
  """True if client_ip lies inside cidr_range ((ip & mask) == (subnet & mask))."""
  if "/" not in cidr_range:
    return False
  try:
    network = ipaddress.ip_network(cidr_range.strip(), strict=False)
    return _parse_ip_address(client_ip) in network
  except ValueError:
    return False


def ip_is_allowed(client_ip, allowed_entries):
  """
  Empty allow-list allows everything. Otherwise the client IP must equal an
  entry or fall inside one of the CIDR entries.
  """
  if not allowed_entries:
    return True
  if not client_ip:
    return False

  for allowed_entry in allowed_entries:
    allowed_entry = allowed_entry.strip()
    if "/" in allowed_entry:
      if ip_in_cidr_range(client_ip, allowed_entry):
        return True
    elif _ip_addresses_equal(client_ip, allowed_entry):
      return True
  return False


def _ip_addresses_equal(client_ip, allowed_ip):
  """Compare as addresses so ::ffff:a.b.c.d matches a.b.c.d."""
  if client_ip == allowed_ip:
    return True
  try:
    return _parse_ip_address(client_ip) == _parse_ip_address(allowed_ip)
  except ValueError:
    return False


def signatures_match(configured_secret_hash, provided_signature):
  """Constant-time comparison of the configured hash and the request header."""
  return hmac.compare_digest(
    configured_secret_hash.encode("utf-8"),
    provided_signature.encode("utf-8"),
  )


def _parse_declared_content_length(raw_content_length):
  if raw_content_length is None:
    return None
  try:
    return int(str(raw_content_length).strip())
  except ValueError:
    return None


def _parse_unix_timestamp(raw_timestamp):
  try:
    return int(float(str(raw_timestamp).strip()))
  except (ValueError, OverflowError):
    return None


# ---------------------------------------------------------------------------
# The gate
# ---------------------------------------------------------------------------

class WebhookGate:
  """Ordered admission pipeline for Flutterwave webhook requests."""

  def __init__(
    self,
    settings,
    rate_limit_store=None,
    clock=time.time,
    signature_header=config.FLUTTERWAVE_WEBHOOK_SIGNATURE_HEADER,
    timestamp_header=config.FLUTTERWAVE_WEBHOOK_TIMESTAMP_HEADER,
  ):
    self.settings = settings
    self.rate_limit_store = rate_limit_store or InMemoryRateLimitStore(clock=clock)
    self._clock = clock
    self.signature_header = signature_header
    self.timestamp_header = timestamp_header

    if not settings.webhook_allowed_ips:
      logger.warning(
        "Flutterwave webhook IP allow-list is empty: accepting callbacks from any IP. "
        "Set FLUTTERWAVE_WEBHOOK_ALLOWED_IPS in production."
      )

  @property
  def stages(self):
    return (
      self._check_request_size,
      self._check_source_ip,
      self._check_rate_limit,
      self._check_timestamp_freshness,
      self._check_signature,
    )

  def admit(self, webhook_request):
    """Run every stage in order. Returns an AdmissionDecision, never raises."""
    for stage in self.stages:
      try:
        rejection = stage(webhook_request)
      except Exception as stage_error:
        logger.error(
          "Flutterwave webhook gate stage %s failed: ip=%s, error=%s",
          stage.__name__, webhook_request.source_ip, stage_error,
        )
        return AdmissionDecision.reject(500, "WEBHOOK_GATE_ERROR", "Webhook could not be verified")
      if rejection is not None:
        return rejection
    return AdmissionDecision.accept()

  # -- 1. size --

  def _check_request_size(self, webhook_request):
    max_size = self.settings.webhook_max_size
    declared_size = _parse_declared_content_length(webhook_request.header("content-length"))
    actual_size = len(webhook_request.body)
    effective_size = max(declared_size or 0, actual_size)

    if effective_size > max_size:
      logger.warning(
        "Flutterwave webhook request size exceeded: ip=%s, size=%s, max_size=%s",
        webhook_request.source_ip, effective_size, max_size,
      )
      return AdmissionDecision.reject(413, "REQUEST_TOO_LARGE", "Request too large")
    return None

  # -- 2. source IP --

  def _check_source_ip(self, webhook_request):
    if ip_is_allowed(webhook_request.source_ip, self.settings.webhook_allowed_ips):
      return None
    logger.warning("Flutterwave webhook IP not allowed: ip=%s", webhook_request.source_ip)
    return AdmissionDecision.reject(401, "IP_NOT_ALLOWED", "Unauthorized")

  # -- 3. rate limit --

  def _check_rate_limit(self, webhook_request):
    rate_limit = self.settings.webhook_rate_limit
    if rate_limit <= 0:
      return None

    hit_count = self.rate_limit_store.increment(
      RATE_LIMIT_KEY_PREFIX + webhook_request.source_ip,
      self.settings.webhook_rate_limit_window_seconds,
    )
    if hit_count > rate_limit:
      logger.warning(
        "Flutterwave webhook rate limit exceeded: ip=%s, hits=%d, limit=%d",
        webhook_request.source_ip, hit_count, rate_limit,
      )
      return AdmissionDecision.reject(429, "RATE_LIMIT_EXCEEDED", "Too many requests")
    return None

  # -- 4. timestamp freshness --

  def _check_timestamp_freshness(self, webhook_request):
    if not self.settings.webhook_validate_timestamp:
      return None

    raw_timestamp = webhook_request.header(self.timestamp_header)
    if raw_timestamp is None or str(raw_timestamp).strip() == "":
      # Older senders omit the header; tolerated and logged.
      logger.info(
        "Flutterwave webhook timestamp header missing: ip=%s", webhook_request.source_ip,
      )
      return None

    request_timestamp = _parse_unix_timestamp(raw_timestamp)
    tolerance_seconds = self.settings.webhook_timestamp_tolerance_seconds
    if request_timestamp is None or abs(self._clock() - request_timestamp) > tolerance_seconds:
      logger.warning(
        "Flutterwave webhook timestamp validation failed: ip=%s", webhook_request.source_ip,
      )
      return AdmissionDecision.reject(401, "TIMESTAMP_INVALID", "Request timestamp invalid")
    return None

  # -- 5. signature --

  def _check_signature(self, webhook_request):
    configured_secret_hash = self.settings.webhook_secret_hash.get_secret_value()
    if not configured_secret_hash:
      logger.warning("Flutterwave webhook secret hash not configured")
      return AdmissionDecision.reject(500, "WEBHOOK_SECRET_NOT_CONFIGURED", "Webhook secret not configured")

    provided_signature = webhook_request.header(self.signature_header)
    if not provided_signature:
      logger.warning("Flutterwave webhook signature missing: ip=%s", webhook_request.source_ip)
      return AdmissionDecision.reject(401, "SIGNATURE_MISSING", "Unauthorized")

    if not signatures_match(configured_secret_hash, provided_signature):
      # Never log either hash value.
      logger.warning(
        "Flutterwave webhook signature verification failed: ip=%s, user_agent=%s",
        webhook_request.source_ip, webhook_request.user_agent,
      )
      return AdmissionDecision.reject(401, "SIGNATURE_INVALID", "Invalid signature")
    return None
