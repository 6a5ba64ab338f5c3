"""
Flutterwave Bridge -- Log Redaction

Strips sensitive fields from any structured payload before it reaches a log.
Matching is by key name: a key whose lowercased name contains any of the
substrings below has its whole value replaced, whatever that value is.

The input is never mutated; a new structure is returned.
"""

REDACTION_MARKER = "***REDACTED***"

SENSITIVE_KEY_SUBSTRINGS = (
  "secret",
  "password",
  "pin",
  "cvv",
  "card_number",
  "account_number",
  "bvn",
  "token",
)


def is_sensitive_key(key):
  lowered_key = str(key).lower()
  return any(substring in lowered_key for substring in SENSITIVE_KEY_SUBSTRINGS)


def redact_sensitive_fields(payload):
  """
  Return a redacted copy of a mapping.

  Nested mappings are walked recursively, including mappings that sit
  inside lists (e.g. a list of bank accounts). Scalars and lists of
  scalars pass through unchanged unless their key matched.
  """
  if not isinstance(payload, dict):
    return payload

  redacted_payload = {}
  for key, value in payload.items():
    if is_sensitive_key(key):
      redacted_payload[key] = REDACTION_MARKER
    else:
      redacted_payload[key] = _redact_value(value)
  return redacted_payload


def _redact_value(value):
  if isinstance(value, dict):
    return redact_sensitive_fields(value)
  if isinstance(value, list):
    return [_redact_value(item) for item in value]
  if isinstance(value, tuple):
    return tuple(_redact_value(item) for item in value)
  return value
