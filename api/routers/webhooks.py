"""
Flutterwave Bridge -- Webhook Router

Receives Flutterwave callbacks.

Flutterwave webhook: POST /api/v1/webhooks/flutterwave
  Headers: verif-hash (secret hash set in the Flutterwave dashboard),
           X-Flutterwave-Timestamp (optional), Content-Length.

Flow:
  1. read the body (never more than webhook_max_size + 1 bytes)
  2. WebhookGate.admit()  -- size, IP allow-list, rate limit, timestamp, signature
  3. WebhookDispatcher.process() -- parse {event, data}, route by event
  4. 200 {"status": "success"} / 400 {"status": "failed"}

Gate rejections answer with the stage's status code and the standard error
envelope. The gate, dispatcher and settings come from app.state (see app.py).
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from services.webhook_gate import WebhookRequestDescriptor

logger = logging.getLogger("fwbridge.webhooks")

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


def resolve_source_ip(request, trust_proxy_headers):
  """
  The peer address, or the first X-Forwarded-For hop when running behind a
  reverse proxy that is trusted to overwrite that header.
  """
  if trust_proxy_headers:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
      return forwarded_for.split(",")[0].strip()
  return request.client.host if request.client else ""


async def _read_body_capped(request, max_size):
  """Read at most max_size + 1 bytes -- enough for the gate to see an overflow."""
  body_chunks = []
  bytes_read = 0
  async for chunk in request.stream():
    body_chunks.append(chunk)
    bytes_read += len(chunk)
    if bytes_read > max_size:
      break
  return b"".join(body_chunks)[:max_size + 1]


@router.post("/flutterwave")
async def receive_flutterwave_webhook(request: Request):
  """
  Receive and process a Flutterwave webhook event.

  Returns 200 once a usable event was dispatched, 400 if the body was not
  a JSON event, or the gate's rejection status.
  """
  webhook_gate = request.app.state.webhook_gate
  webhook_dispatcher = request.app.state.webhook_dispatcher
  trust_proxy_headers = request.app.state.webhook_trust_proxy_headers

  source_ip = resolve_source_ip(request, trust_proxy_headers)

  # -- Declared oversize: reject without reading the body at all --
  headers_only_request = WebhookRequestDescriptor.from_raw(request.headers, b"", source_ip)
  max_size = webhook_gate.settings.webhook_max_size
  raw_body = b""
  if headers_only_request.header("content-length") is None or _declares_at_most(headers_only_request, max_size):
    raw_body = await _read_body_capped(request, max_size)

  webhook_request = WebhookRequestDescriptor.from_raw(request.headers, raw_body, source_ip)

  # -- Admission --
  admission_decision = webhook_gate.admit(webhook_request)
  if not admission_decision.accepted:
    return JSONResponse(
      status_code=admission_decision.http_status,
      content=admission_decision.to_response_content(),
    )

  # -- Dispatch (handlers may hit the database, keep them off the event loop) --
  try:
    dispatch_result = await run_in_threadpool(webhook_dispatcher.process, webhook_request)
  except Exception as processing_error:
    logger.error(
      "Flutterwave webhook processing error: ip=%s, error=%s",
      source_ip, processing_error,
    )
    # The event was authentic; acknowledge so Flutterwave does not amplify retries.
    return JSONResponse(status_code=200, content={"status": "success"})

  if dispatch_result is None:
    return JSONResponse(status_code=400, content={"status": "failed"})

  return JSONResponse(status_code=200, content={"status": "success"})


def _declares_at_most(webhook_request, max_size):
  try:
    return int(webhook_request.header("content-length")) <= max_size
  except ValueError:
    return True
