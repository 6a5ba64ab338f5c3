"""
Flutterwave Bridge -- Webhook Dispatcher

Parses an admitted callback into a WebhookEnvelope and routes it by event:

  charge.completed / charge.successful -> success handler (returns data)
  charge.failed                         -> failure handler (returns data)
  anything else                         -> full envelope, unmodified

Only call process() after WebhookGate.admit() returned an Accept decision;
the dispatcher never re-verifies the request itself.

Handlers are plain callables taking (data, envelope). The defaults only log.
Redelivered events (same event name + data.id inside the deduplication TTL)
are logged and skip the handlers, so side effects run once per event.
A handler that raises releases the event again, so a later delivery retries it.
"""

import json
import logging

from pydantic import ValidationError

from models import WebhookEnvelope
from services.log_redactor import redact_sensitive_fields

logger = logging.getLogger("fwbridge.webhook_dispatcher")

SUCCESSFUL_CHARGE_EVENTS = frozenset({"charge.completed", "charge.successful"})
FAILED_CHARGE_EVENTS = frozenset({"charge.failed"})

DEDUPLICATION_KEY_PREFIX = "flutterwave-webhook-event:"


def log_successful_charge(data, envelope):
  logger.info("Flutterwave payment successful: %s", redact_sensitive_fields(data))
  return data


def log_failed_charge(data, envelope):
  logger.warning("Flutterwave payment failed: %s", redact_sensitive_fields(data))
  return data


def load_webhook_payload(raw_body):
  """Decode a callback body. Returns None unless it is a JSON object."""
  try:
    payload = json.loads(raw_body)
  except (ValueError, UnicodeDecodeError):
    return None
  if not isinstance(payload, dict):
    return None
  return payload


def parse_webhook_envelope(payload):
  """Build a WebhookEnvelope from a decoded payload without touching the payload."""
  normalized_payload = dict(payload)

  # Some senders use null or [] for an empty data object.
  if not isinstance(normalized_payload.get("data"), dict):
    normalized_payload["data"] = {}
  event_name = normalized_payload.get("event")
  if not isinstance(event_name, str):
    normalized_payload["event"] = "" if event_name is None else str(event_name)

  try:
    return WebhookEnvelope.model_validate(normalized_payload)
  except ValidationError:
    return None


class WebhookDispatcher:
  """Routes admitted Flutterwave callbacks to their handlers."""

  def __init__(
    self,
    on_successful_charge=log_successful_charge,
    on_failed_charge=log_failed_charge,
    deduplication_store=None,
    deduplication_ttl_seconds=0,
  ):
    self.on_successful_charge = on_successful_charge
    self.on_failed_charge = on_failed_charge
    self.deduplication_store = deduplication_store
    self.deduplication_ttl_seconds = deduplication_ttl_seconds

  def process(self, webhook_request):
    """
    Dispatch one admitted request.

    Returns `data` for charge events, the whole envelope (as a dict) for any
    other event, or None when the body is not a usable JSON envelope.
    """
    payload = load_webhook_payload(webhook_request.body)
    envelope = parse_webhook_envelope(payload) if payload is not None else None
    if envelope is None:
      logger.warning(
        "Flutterwave webhook body is not a JSON object: ip=%s", webhook_request.source_ip,
      )
      return None

    event_name = envelope.event or "unknown"
    data = envelope.data

    logger.info(
      "Flutterwave webhook received: event=%s, data=%s",
      event_name, redact_sensitive_fields(data),
    )

    if envelope.event in SUCCESSFUL_CHARGE_EVENTS:
      return self._run_handler(self.on_successful_charge, envelope)

    if envelope.event in FAILED_CHARGE_EVENTS:
      return self._run_handler(self.on_failed_charge, envelope)

    logger.info("Unhandled Flutterwave webhook event: %s", event_name)
    return payload

  def _run_handler(self, handler, envelope):
    deduplication_key = self._deduplication_key(envelope)
    if deduplication_key is not None and self._is_redelivery(deduplication_key):
      logger.info(
        "Flutterwave webhook redelivery ignored: event=%s, id=%s",
        envelope.event, envelope.data.get("id"),
      )
      return envelope.data

    try:
      return handler(envelope.data, envelope)
    except Exception:
      # Not processed, so the next delivery of this event must reach the handler.
      if deduplication_key is not None:
        self.deduplication_store.reset(deduplication_key)
      raise

  def _deduplication_key(self, envelope):
    if self.deduplication_store is None or self.deduplication_ttl_seconds <= 0:
      return None
    event_id = envelope.data.get("id")
    if event_id is None or event_id == "":
      return None
    return f"{DEDUPLICATION_KEY_PREFIX}{envelope.event}:{event_id}"

  def _is_redelivery(self, deduplication_key):
    """Claims the event before its handler runs, so concurrent duplicates run it once."""
    hit_count = self.deduplication_store.increment(deduplication_key, self.deduplication_ttl_seconds)
    return hit_count > 1
