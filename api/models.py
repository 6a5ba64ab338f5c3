"""
Flutterwave Bridge -- Pydantic Models

  GatewayCredential    -- keys + connection options for the outbound client
  WebhookGateSettings  -- admission pipeline options for inbound callbacks
  WebhookEnvelope      -- {event, data} parsed from a callback body

All settings models are frozen: validated once at construction, immutable after.
"""

import ipaddress
from typing import List, Literal, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from services.gateway_errors import GatewayConfigError

GATEWAY_DOMAIN = "flutterwave.com"

# An operator-supplied base_url must point at one of these hosts (or a subdomain).
ALLOWED_BASE_URL_HOST_SUFFIXES = (GATEWAY_DOMAIN,)


def _describe_validation_error(validation_error):
  """
  Flatten a pydantic ValidationError into one line.
  Only field names and messages are used -- never the rejected input values,
  which may be key material.
  """
  problems = []
  for error in validation_error.errors():
    field_name = ".".join(str(part) for part in error.get("loc", ())) or "settings"
    problems.append(f"{field_name}: {error.get('msg', 'invalid value')}")
  return "; ".join(problems)


class GatewayCredential(BaseModel):
  """Credentials and connection options for the Flutterwave API."""

  model_config = ConfigDict(frozen=True, extra="ignore")

  secret_key: SecretStr
  public_key: str
  encryption_key: SecretStr = SecretStr("")
  base_url: Optional[str] = None
  api_version: Literal["v3", "v4"] = "v3"
  environment: Literal["test", "live"] = "test"
  timeout_seconds: float = Field(default=30, gt=0)
  connect_timeout_seconds: float = Field(default=10, gt=0)
  default_currency: str = "NGN"
  default_country: str = "NG"
  log_requests: bool = False

  @field_validator("secret_key", mode="before")
  @classmethod
  def _secret_key_must_not_be_empty(cls, value):
    if isinstance(value, SecretStr):
      value = value.get_secret_value()
    if not isinstance(value, str) or not value.strip():
      raise ValueError("Flutterwave secret key is required")
    return value.strip()

  @field_validator("public_key", mode="before")
  @classmethod
  def _public_key_must_not_be_empty(cls, value):
    if not isinstance(value, str) or not value.strip():
      raise ValueError("Flutterwave public key is required")
    return value.strip()

  @field_validator("base_url", mode="before")
  @classmethod
  def _base_url_must_be_https_on_allowed_host(cls, value):
    if value is None or (isinstance(value, str) and not value.strip()):
      return None
    if not isinstance(value, str):
      raise ValueError("base_url must be a string")

    parsed_url = urlsplit(value.strip())
    if parsed_url.scheme.lower() != "https":
      raise ValueError("base_url must use HTTPS")

    hostname = (parsed_url.hostname or "").lower()
    if not hostname:
      raise ValueError("base_url has no host")
    if parsed_url.username or parsed_url.password:
      raise ValueError("base_url must not contain credentials")

    host_is_allowed = any(
      hostname == suffix or hostname.endswith("." + suffix)
      for suffix in ALLOWED_BASE_URL_HOST_SUFFIXES
    )
    if not host_is_allowed:
      raise ValueError("base_url host is not an allowed Flutterwave domain")

    return value.strip()

  @classmethod
  def from_options(cls, **options):
    """
    Build a credential, turning any validation problem into GatewayConfigError.

    Accepts the option names from the configuration surface
    (`timeout` is an alias for `timeout_seconds`).
    """
    if "timeout" in options and "timeout_seconds" not in options:
      options["timeout_seconds"] = options.pop("timeout")
    try:
      return cls(**options)
    except ValidationError as validation_error:
      raise GatewayConfigError(
        f"Invalid Flutterwave configuration: {_describe_validation_error(validation_error)}"
      ) from None

  def resolve_base_url(self):
    """Explicit base_url wins; otherwise https://api.flutterwave.com/{api_version}/."""
    if self.base_url:
      return self.base_url.rstrip("/") + "/"
    return f"https://api.{GATEWAY_DOMAIN}/{self.api_version}/"


class WebhookGateSettings(BaseModel):
  """Options for the inbound webhook admission pipeline."""

  model_config = ConfigDict(frozen=True)

  webhook_secret_hash: SecretStr = SecretStr("")
  webhook_allowed_ips: List[str] = Field(default_factory=list)
  webhook_rate_limit: int = Field(default=60, ge=0)
  webhook_max_size: int = Field(default=1048576, gt=0)
  webhook_validate_timestamp: bool = True
  webhook_timestamp_tolerance_seconds: int = Field(default=300, gt=0)
  webhook_rate_limit_window_seconds: int = Field(default=60, gt=0)

  @field_validator("webhook_allowed_ips", mode="before")
  @classmethod
  def _allowed_ips_must_parse(cls, value):
    if value is None:
      return []
    if isinstance(value, str):
      value = value.split(",")
    cleaned_entries = []
    for entry in value:
      entry = str(entry).strip()
      if not entry:
        continue
      try:
        if "/" in entry:
          ipaddress.ip_network(entry, strict=False)
        else:
          ipaddress.ip_address(entry)
      except ValueError:
        raise ValueError(f"webhook_allowed_ips entry is not an IP or CIDR range: {entry}")
      cleaned_entries.append(entry)
    return cleaned_entries

  @classmethod
  def from_options(cls, **options):
    try:
      return cls(**options)
    except ValidationError as validation_error:
      raise GatewayConfigError(
        f"Invalid webhook configuration: {_describe_validation_error(validation_error)}"
      ) from None


class WebhookEnvelope(BaseModel):
  """A parsed webhook callback. Unknown top-level fields are kept."""

  model_config = ConfigDict(extra="allow")

  event: str = ""
  data: dict = Field(default_factory=dict)
