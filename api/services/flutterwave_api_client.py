"""
Flutterwave Bridge -- Flutterwave API Client

Authenticated JSON calls against the Flutterwave REST API using httpx.

Auth modes (picked from the credential's api_version):
  v3 (default) -- static bearer: Authorization: Bearer <secret_key>
  v4           -- OAuth2 client_credentials against the Flutterwave IdP,
                  token cached in an AccessTokenCache owned by this client

Every call:
  1. sanitizes the endpoint (path traversal / SSRF guard)
  2. resolves the Authorization header
  3. optionally logs the redacted request and response
  4. issues the request with separate connect and total timeouts
  5. maps status=error bodies, HTTP errors and transport failures to
     GatewayApiError / GatewayTransportError

No automatic retry here; idempotency of payment calls is the caller's concern.
The only retried call is the token fetch (see services.access_token_cache).
"""

import logging

import httpx

import config
from models import GatewayCredential
from services.access_token_cache import AccessTokenCache
from services.endpoint_sanitizer import sanitize_endpoint
from services.gateway_errors import (
  GatewayApiError,
  GatewayTransportError,
)
from services.log_redactor import redact_sensitive_fields

logger = logging.getLogger("fwbridge.client")

_GENERIC_API_FAILURE_MESSAGE = "Flutterwave API request failed"


def preview_authorization_header(authorization_header):
  """
  First 20 and last 10 characters of the header, never the whole value.
  Headers too short for that to hide anything are masked entirely.
  """
  if not authorization_header:
    return "Not set"
  if len(authorization_header) <= 40:
    return authorization_header[:7] + "***"
  return authorization_header[:20] + "..." + authorization_header[-10:]


def _extract_error_message_from_response(response):
  """Pull `message` (or `data.message`) out of an error response body."""
  try:
    error_body = response.json()
  except (ValueError, UnicodeDecodeError):
    return _GENERIC_API_FAILURE_MESSAGE

  if not isinstance(error_body, dict):
    return _GENERIC_API_FAILURE_MESSAGE

  message = error_body.get("message")
  if isinstance(message, str) and message:
    return message

  nested_data = error_body.get("data")
  if isinstance(nested_data, dict):
    nested_message = nested_data.get("message")
    if isinstance(nested_message, str) and nested_message:
      return nested_message

  return _GENERIC_API_FAILURE_MESSAGE


def translate_transport_failure(request_error, service_label="Flutterwave API"):
  """
  Map an httpx error without a usable response to GatewayTransportError.
  Timeouts and connection problems get a distinct, actionable message.
  """
  error_text = str(request_error) or type(request_error).__name__
  if isinstance(request_error, httpx.TimeoutException):
    message = (
      f"{service_label} connection failed: request timed out ({error_text}). "
      "Please check your network connection and API endpoint."
    )
  elif isinstance(request_error, (httpx.ConnectError, httpx.NetworkError)):
    message = (
      f"{service_label} connection failed: {error_text}. "
      "Please check your network connection and API endpoint."
    )
  else:
    message = f"{service_label} request failed: {error_text}"
  return GatewayTransportError(message, 0)


class FlutterwaveApiClient:
  """Outbound client for one set of Flutterwave credentials."""

  def __init__(
    self,
    credential,
    http_transport=None,
    token_cache=None,
    oauth_token_url=None,
  ):
    if not isinstance(credential, GatewayCredential):
      raise TypeError("credential must be a GatewayCredential")

    self.credential = credential
    self.base_url = credential.resolve_base_url()
    self.oauth_token_url = oauth_token_url or config.FLUTTERWAVE_OAUTH_TOKEN_URL
    self.http_transport = http_transport
    self.token_cache = token_cache or AccessTokenCache()
    self.timeout = httpx.Timeout(
      credential.timeout_seconds,
      connect=min(credential.connect_timeout_seconds, credential.timeout_seconds),
    )

  @property
  def uses_oauth(self):
    return self.credential.api_version == "v4"

  def _new_http_client(self):
    return httpx.AsyncClient(
      timeout=self.timeout,
      transport=self.http_transport,
      headers={"Content-Type": "application/json", "Accept": "application/json"},
    )

  # -----------------------------------------------------------------------
  # OAuth2 client_credentials (v4 only)
  # -----------------------------------------------------------------------

  async def fetch_client_credentials_token(self):
    """
    POST to the IdP token endpoint and return its JSON body.

    Transport failures and 5xx/429 answers come back as retryable errors
    for the token cache; anything else is left to the cache to judge.
    """
    form_fields = {
      "client_id": self.credential.public_key,
      "client_secret": self.credential.secret_key.get_secret_value(),
      "grant_type": "client_credentials",
    }
    try:
      async with httpx.AsyncClient(timeout=self.timeout, transport=self.http_transport) as http_client:
        response = await http_client.post(
          self.oauth_token_url,
          data=form_fields,
          headers={"Accept": "application/json"},
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as status_error:
      raise GatewayApiError(
        _extract_error_message_from_response(status_error.response),
        status_error.response.status_code,
      ) from status_error
    except httpx.RequestError as request_error:
      raise translate_transport_failure(request_error, "Flutterwave IdP") from request_error

    try:
      return response.json()
    except ValueError:
      # Well-formed HTTP, unusable body: the cache treats a non-dict as permanent.
      return None

  async def _resolve_authorization_header(self, cancellation_event=None):
    if self.uses_oauth:
      access_token = await self.token_cache.get_token(
        self.fetch_client_credentials_token,
        cancellation_event=cancellation_event,
      )
      return f"Bearer {access_token}"
    return f"Bearer {self.credential.secret_key.get_secret_value()}"

  # -----------------------------------------------------------------------
  # Public verbs
  # -----------------------------------------------------------------------

  async def get(self, endpoint, query=None, cancellation_event=None):
    return await self.request("GET", endpoint, query=query, cancellation_event=cancellation_event)

  async def post(self, endpoint, body=None, cancellation_event=None):
    return await self.request("POST", endpoint, body=body or {}, cancellation_event=cancellation_event)

  async def put(self, endpoint, body=None, cancellation_event=None):
    return await self.request("PUT", endpoint, body=body or {}, cancellation_event=cancellation_event)

  async def delete(self, endpoint, cancellation_event=None):
    return await self.request("DELETE", endpoint, cancellation_event=cancellation_event)

  # -----------------------------------------------------------------------
  # Core request
  # -----------------------------------------------------------------------

  async def request(self, method, endpoint, query=None, body=None, cancellation_event=None):
    """
    Issue one authenticated request and return the parsed JSON body (dict).

    Raises GatewayValidationError, GatewayAuthFailed, GatewayApiError
    or GatewayTransportError.
    """
    sanitized_endpoint = sanitize_endpoint(endpoint)
    full_url = self.base_url.rstrip("/") + "/" + sanitized_endpoint

    authorization_header = await self._resolve_authorization_header(cancellation_event)

    request_options = {}
    if query:
      request_options["params"] = query
    if body is not None:
      request_options["json"] = body

    if self.credential.log_requests:
      logger.info(
        "Flutterwave API request: method=%s, endpoint=%s, full_url=%s, auth_header_preview=%s, options=%s",
        method, sanitized_endpoint, full_url,
        preview_authorization_header(authorization_header),
        redact_sensitive_fields(request_options),
      )

    try:
      async with self._new_http_client() as http_client:
        response = await http_client.request(
          method,
          full_url,
          headers={"Authorization": authorization_header},
          **request_options,
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as status_error:
      self._log_request_error(status_error, sanitized_endpoint)
      raise GatewayApiError(
        _extract_error_message_from_response(status_error.response),
        status_error.response.status_code,
      ) from status_error
    except httpx.RequestError as request_error:
      self._log_request_error(request_error, sanitized_endpoint)
      raise translate_transport_failure(request_error) from request_error

    response_body = self._parse_response_body(response)

    if self.credential.log_requests:
      logger.info(
        "Flutterwave API response: status=%s, body=%s",
        response.status_code,
        redact_sensitive_fields(response_body),
      )

    if response_body.get("status") == "error":
      raise GatewayApiError(
        response_body.get("message") or "An error occurred",
        response.status_code,
      )

    return response_body

  def _parse_response_body(self, response):
    if not response.content:
      return {}
    try:
      response_body = response.json()
    except ValueError as decode_error:
      raise GatewayApiError(
        "Flutterwave API returned a response that is not valid JSON",
        response.status_code,
      ) from decode_error
    if not isinstance(response_body, dict):
      raise GatewayApiError(
        "Flutterwave API returned an unexpected response shape",
        response.status_code,
      )
    return response_body

  def _log_request_error(self, request_error, sanitized_endpoint):
    if not self.credential.log_requests:
      return
    logger.error(
      "Flutterwave API error: exception=%s, message=%s, endpoint=%s",
      type(request_error).__name__, request_error, sanitized_endpoint,
    )


def build_flutterwave_api_client_from_config(http_transport=None):
  """Construct a client from config.py values. Raises GatewayConfigError."""
  credential = GatewayCredential.from_options(
    public_key=config.FLUTTERWAVE_PUBLIC_KEY,
    secret_key=config.FLUTTERWAVE_SECRET_KEY,
    encryption_key=config.FLUTTERWAVE_ENCRYPTION_KEY,
    base_url=config.FLUTTERWAVE_BASE_URL,
    api_version=config.FLUTTERWAVE_API_VERSION,
    environment=config.FLUTTERWAVE_ENVIRONMENT,
    timeout=config.FLUTTERWAVE_TIMEOUT_SECONDS,
    connect_timeout_seconds=config.FLUTTERWAVE_CONNECT_TIMEOUT_SECONDS,
    default_currency=config.FLUTTERWAVE_DEFAULT_CURRENCY,
    default_country=config.FLUTTERWAVE_DEFAULT_COUNTRY,
    log_requests=config.FLUTTERWAVE_LOG_REQUESTS,
  )
  return FlutterwaveApiClient(credential, http_transport=http_transport)
