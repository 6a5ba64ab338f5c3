"""
Flutterwave Bridge -- Endpoint and Identifier Sanitization

Everything that ends up in an outbound URL path goes through here first.

  sanitize_endpoint()          -- relative API path (path traversal + SSRF guard)
  validate_path_identifier()   -- transaction / transfer / refund ids
  validate_card_bin()          -- exactly 6 digits
  validate_digits_only()       -- account numbers, bank codes

All functions are pure. Violations raise GatewayValidationError; nothing is
ever silently truncated or rewritten beyond stripping the outer slashes.
"""

import re

from services.gateway_errors import GatewayValidationError

ENDPOINT_MAX_LENGTH = 500

# Checked against the lowercased endpoint.
_FORBIDDEN_ENDPOINT_FRAGMENTS = ("..", "//", "\\", "%2e%2e", "%2f%2f")

_ABSOLUTE_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)

_DANGEROUS_SCHEME_PREFIXES = ("file:", "ftp:", "gopher:", "ldap:", "data:")

_PATH_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")

_CARD_BIN_PATTERN = re.compile(r"^[0-9]{6}$")

_DIGITS_ONLY_PATTERN = re.compile(r"^[0-9]+$")


def sanitize_endpoint(raw_endpoint):
  """
  Validate and normalize a relative API path.

  Steps, in order, failing on the first violation:
    1. strip leading/trailing '/'
    2. reject '..', '//', backslash and their percent-encoded forms
    3. reject absolute http(s) URLs (would override the configured base URL)
    4. reject file:, ftp:, gopher:, ldap:, data: schemes
    5. reject anything longer than 500 characters

  Returns the trimmed endpoint.
  """
  if not isinstance(raw_endpoint, str):
    raise GatewayValidationError("Invalid endpoint: must be a string")

  endpoint = raw_endpoint.strip("/")
  lowered_endpoint = endpoint.lower()

  for forbidden_fragment in _FORBIDDEN_ENDPOINT_FRAGMENTS:
    if forbidden_fragment in lowered_endpoint:
      raise GatewayValidationError("Invalid endpoint path")

  if _ABSOLUTE_URL_PATTERN.match(endpoint):
    raise GatewayValidationError("Invalid endpoint: absolute URLs not allowed")

  if lowered_endpoint.startswith(_DANGEROUS_SCHEME_PREFIXES):
    raise GatewayValidationError("Invalid endpoint: URL schemes not allowed")

  if len(endpoint) > ENDPOINT_MAX_LENGTH:
    raise GatewayValidationError(
      f"Invalid endpoint: exceeds maximum length of {ENDPOINT_MAX_LENGTH} characters"
    )

  return endpoint


def validate_path_identifier(raw_identifier, label="transaction ID"):
  """
  Validate an identifier that is interpolated into a URL path.
  Accepts str or int. Returns the identifier as a string.
  """
  if isinstance(raw_identifier, bool) or not isinstance(raw_identifier, (str, int)):
    raise GatewayValidationError(f"Invalid {label} format")

  identifier = str(raw_identifier)
  if len(identifier) > 100:
    raise GatewayValidationError(f"{label[0].upper()}{label[1:]} exceeds maximum length")
  if not _PATH_IDENTIFIER_PATTERN.match(identifier):
    raise GatewayValidationError(f"Invalid {label} format")
  return identifier


def validate_card_bin(card_bin):
  """A card BIN is exactly six digits."""
  if not isinstance(card_bin, str) or not _CARD_BIN_PATTERN.match(card_bin):
    raise GatewayValidationError("Invalid card BIN format. BIN must be exactly 6 digits.")
  return card_bin


def validate_digits_only(value, label):
  if not isinstance(value, str) or not _DIGITS_ONLY_PATTERN.match(value):
    raise GatewayValidationError(f"Invalid {label} format.")
  return value
