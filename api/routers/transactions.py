"""
Flutterwave Bridge -- Transactions Router

  GET /api/v1/transactions/{transaction_id}/verify -- verify a charge with Flutterwave

Uses the process-wide FlutterwaveApiClient from app.state. Gateway errors are
mapped onto the standard error envelope.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from services.flutterwave_resources import PaymentResource
from services.gateway_errors import (
  GatewayApiError,
  GatewayAuthFailed,
  GatewayTransportError,
  GatewayValidationError,
)

logger = logging.getLogger("fwbridge.transactions_router")

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


def _error_response(http_status_code, error_code, error_message):
  """Build a standard error envelope."""
  return JSONResponse(
    status_code=http_status_code,
    content={
      "ok": False,
      "data": None,
      "error": {"code": error_code, "message": error_message},
    },
  )


def gateway_error_response(gateway_error):
  """Translate a gateway error into an HTTP response for our own callers."""
  if isinstance(gateway_error, GatewayValidationError):
    return _error_response(400, "INVALID_INPUT", gateway_error.message)
  if isinstance(gateway_error, GatewayAuthFailed):
    return _error_response(502, "GATEWAY_AUTH_FAILED", "Could not authenticate with Flutterwave")
  if isinstance(gateway_error, GatewayTransportError):
    return _error_response(504, "GATEWAY_UNREACHABLE", gateway_error.message)
  if isinstance(gateway_error, GatewayApiError) and 400 <= gateway_error.status_code < 500:
    return _error_response(gateway_error.status_code, "GATEWAY_REJECTED", gateway_error.message)
  return _error_response(502, "GATEWAY_ERROR", gateway_error.message)


@router.get("/{transaction_id}/verify")
async def verify_transaction(transaction_id: str, request: Request):
  """Ask Flutterwave for the authoritative status of a transaction."""
  api_client = request.app.state.flutterwave_api_client
  if api_client is None:
    return _error_response(503, "GATEWAY_NOT_CONFIGURED", "Flutterwave credentials are not configured")

  try:
    verification = await PaymentResource(api_client).verify(transaction_id)
  except (GatewayValidationError, GatewayAuthFailed, GatewayApiError, GatewayTransportError) as gateway_error:
    logger.warning(
      "Transaction verification failed: transaction_id=%s, error=%r",
      transaction_id[:100], gateway_error,
    )
    return gateway_error_response(gateway_error)

  return JSONResponse(
    status_code=200,
    content={"ok": True, "data": verification.get("data"), "error": None},
  )
