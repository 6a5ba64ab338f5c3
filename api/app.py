"""
Flutterwave Bridge API

Outbound Flutterwave client + hardened inbound webhook endpoint.
Port 8190 by default.

Endpoints:
  /api/health                                  -- health check + gateway configuration summary
  /api/v1/webhooks/flutterwave                 -- Flutterwave callbacks (gated)
  /api/v1/transactions/{transaction_id}/verify -- verify a transaction with Flutterwave
  /api/docs                                    -- Swagger UI documentation

One API client, webhook gate and dispatcher are built per process in
create_app() and handed to the routers through app.state.

Run with:
    uvicorn app:app --host 127.0.0.1 --port 8190
"""

import datetime
import logging

from fastapi import FastAPI, Request
from pydantic import BaseModel

import config
from models import WebhookGateSettings
from routers import transactions, webhooks
from services import transaction_record_service
from services.flutterwave_api_client import build_flutterwave_api_client_from_config
from services.gateway_errors import GatewayConfigError
from services.rate_limit_store import InMemoryRateLimitStore
from services.webhook_dispatcher import WebhookDispatcher
from services.webhook_gate import WebhookGate

# --- Logging ---
logging.basicConfig(
  level=logging.INFO,
  format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger("fwbridge.api")


def build_webhook_gate_settings_from_config():
  return WebhookGateSettings.from_options(
    webhook_secret_hash=config.FLUTTERWAVE_WEBHOOK_SECRET_HASH,
    webhook_allowed_ips=config.FLUTTERWAVE_WEBHOOK_ALLOWED_IPS,
    webhook_rate_limit=config.FLUTTERWAVE_WEBHOOK_RATE_LIMIT,
    webhook_max_size=config.FLUTTERWAVE_WEBHOOK_MAX_SIZE,
    webhook_validate_timestamp=config.FLUTTERWAVE_WEBHOOK_VALIDATE_TIMESTAMP,
  )


def build_webhook_dispatcher_from_config(counter_store):
  if config.FLUTTERWAVE_RECORD_TRANSACTIONS:
    return WebhookDispatcher(
      on_successful_charge=transaction_record_service.record_successful_charge,
      on_failed_charge=transaction_record_service.record_failed_charge,
      deduplication_store=counter_store,
      deduplication_ttl_seconds=config.FLUTTERWAVE_WEBHOOK_DEDUPLICATION_TTL_SECONDS,
    )
  return WebhookDispatcher(
    deduplication_store=counter_store,
    deduplication_ttl_seconds=config.FLUTTERWAVE_WEBHOOK_DEDUPLICATION_TTL_SECONDS,
  )


def _build_api_client_or_none():
  """
  The webhook endpoint works without outbound credentials, so a missing key
  disables outbound calls instead of preventing startup. /api/health reports it.
  """
  try:
    return build_flutterwave_api_client_from_config()
  except GatewayConfigError as config_error:
    logger.error("Flutterwave API client disabled: %s", config_error.message)
    return None


def create_app(
  flutterwave_api_client=None,
  webhook_gate=None,
  webhook_dispatcher=None,
  webhook_trust_proxy_headers=None,
):
  """Build the FastAPI app. Any component not passed in is built from config."""
  application = FastAPI(
    title="Flutterwave Bridge API",
    description="Flutterwave API client with a verified, rate-limited webhook endpoint.",
    version=config.API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
  )

  counter_store = InMemoryRateLimitStore()
  if webhook_gate is None:
    webhook_gate = WebhookGate(build_webhook_gate_settings_from_config(), rate_limit_store=counter_store)
  if webhook_dispatcher is None:
    webhook_dispatcher = build_webhook_dispatcher_from_config(counter_store)
  if flutterwave_api_client is None:
    flutterwave_api_client = _build_api_client_or_none()
  if webhook_trust_proxy_headers is None:
    webhook_trust_proxy_headers = config.FLUTTERWAVE_WEBHOOK_TRUST_PROXY_HEADERS

  application.state.flutterwave_api_client = flutterwave_api_client
  application.state.webhook_gate = webhook_gate
  application.state.webhook_dispatcher = webhook_dispatcher
  application.state.webhook_trust_proxy_headers = webhook_trust_proxy_headers

  application.include_router(webhooks.router)
  application.include_router(transactions.router)
  application.add_api_route("/api/health", health_check, methods=["GET"], response_model=HealthResponse)

  return application


# --- Health ---

class GatewayConfigurationSummary(BaseModel):
  public_key_configured: bool
  secret_key_configured: bool
  webhook_secret_hash_configured: bool
  webhook_ip_allow_list_configured: bool
  api_version: str
  environment: str
  base_url: str


class HealthResponse(BaseModel):
  status: str
  service: str
  version: str
  timestamp: str
  gateway: GatewayConfigurationSummary
  database: str


def _summarize_gateway_configuration(request_app):
  api_client = request_app.state.flutterwave_api_client
  webhook_gate = request_app.state.webhook_gate
  if api_client is not None:
    # Report the credential actually in use, which may have been injected.
    credential = api_client.credential
    public_key_configured = bool(credential.public_key)
    secret_key_configured = bool(credential.secret_key.get_secret_value())
    api_version = credential.api_version
    environment = credential.environment
    base_url = api_client.base_url
  else:
    public_key_configured = bool(config.FLUTTERWAVE_PUBLIC_KEY)
    secret_key_configured = bool(config.FLUTTERWAVE_SECRET_KEY)
    api_version = config.FLUTTERWAVE_API_VERSION
    environment = config.FLUTTERWAVE_ENVIRONMENT
    base_url = "unavailable"
  return GatewayConfigurationSummary(
    public_key_configured=public_key_configured,
    secret_key_configured=secret_key_configured,
    webhook_secret_hash_configured=bool(webhook_gate.settings.webhook_secret_hash.get_secret_value()),
    webhook_ip_allow_list_configured=bool(webhook_gate.settings.webhook_allowed_ips),
    api_version=api_version,
    environment=environment,
    base_url=base_url,
  )


def _check_database_status():
  if not config.FLUTTERWAVE_RECORD_TRANSACTIONS:
    return "disabled"
  try:
    import database
    row = database.execute_query_returning_one_row("SELECT 1 AS alive")
    if row and row.get("alive") == 1:
      return "connected"
    return "error"
  except Exception as db_error:
    return f"error: {db_error}"


async def health_check(request: Request):
  """Health check endpoint for monitoring and load balancers. Never reveals key values."""
  gateway_summary = _summarize_gateway_configuration(request.app)
  is_healthy = request.app.state.flutterwave_api_client is not None and gateway_summary.webhook_secret_hash_configured
  return HealthResponse(
    status="healthy" if is_healthy else "degraded",
    service="flutterwave-bridge-api",
    version=config.API_VERSION,
    timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
    gateway=gateway_summary,
    database=_check_database_status(),
  )


app = create_app()


if __name__ == "__main__":
  import uvicorn
  logger.info("Starting Flutterwave Bridge API on %s:%d", config.API_HOST, config.API_PORT)
  uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
