"""
Flutterwave Bridge -- Gateway Error Taxonomy

Every failure the outbound client can surface is one of these classes.
The class is the error kind; callers branch on it instead of parsing messages.

  GatewayConfigError     -- bad credentials / disallowed base URL (fatal, never retried)
  GatewayValidationError -- malformed endpoint, id or structured input (never retried)
  GatewayAuthFailed      -- OAuth exchange failed after retries or returned garbage
  GatewayApiError        -- gateway answered with status=error or a non-2xx code
  GatewayTransportError  -- DNS / connect / timeout, no HTTP response (status_code 0)

The inbound webhook path does not raise: see services.webhook_gate.AdmissionDecision.
"""


class GatewayError(Exception):
  """Base class for all gateway errors. Carries a message and a status code."""

  def __init__(self, message="", status_code=0):
    super().__init__(message)
    self.message = message
    self.status_code = status_code

  @property
  def is_retryable(self):
    return False

  def __repr__(self):
    return f"{type(self).__name__}(message={self.message!r}, status_code={self.status_code})"


class GatewayConfigError(GatewayError):
  """Invalid or missing configuration, detected at construction time."""


class GatewayValidationError(GatewayError):
  """Caller-supplied input was rejected before any network call."""


class GatewayAuthFailed(GatewayError):
  """Could not obtain a bearer token from the identity provider."""


class GatewayApiError(GatewayError):
  """The gateway returned an application-level or HTTP error."""

  @property
  def is_retryable(self):
    return self.status_code >= 500 or self.status_code == 429


class GatewayTransportError(GatewayError):
  """The request never produced an HTTP response."""

  def __init__(self, message="", status_code=0):
    super().__init__(message, status_code)

  @property
  def is_retryable(self):
    return True
