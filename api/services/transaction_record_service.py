"""
Flutterwave Bridge -- Transaction Record Service

Persists the outcome of charge webhooks into `flutterwave_transactions`.
This is the persistence boundary: the gate and dispatcher never touch the
database themselves, they call the handler hooks defined here.

Table (MySQL):
  flutterwave_transactions
    id               BIGINT AUTO_INCREMENT PRIMARY KEY
    transaction_id   VARCHAR(191) UNIQUE NULL
    transaction_ref  VARCHAR(191) UNIQUE NULL
    amount           DECIMAL(15,2) NOT NULL
    currency         CHAR(3) DEFAULT 'NGN'
    status           VARCHAR(32) DEFAULT 'pending'   -- successful | failed | pending
    payment_type     VARCHAR(64) NULL
    customer_email   VARCHAR(191) NULL
    customer_name    VARCHAR(191) NULL
    customer_phone   VARCHAR(64) NULL
    metadata         JSON NULL
    response_data    JSON NULL                       -- redacted webhook data
    created_at, updated_at TIMESTAMP
"""

import decimal
import json
import logging

import config
from services.log_redactor import redact_sensitive_fields
from services.webhook_dispatcher import log_failed_charge, log_successful_charge

logger = logging.getLogger("fwbridge.transactions")

TRANSACTION_STATUS_SUCCESSFUL = "successful"
TRANSACTION_STATUS_FAILED = "failed"
TRANSACTION_STATUS_PENDING = "pending"


def _get_database():
  """Lazy import to allow unit testing without live DB."""
  import database
  return database


def _parse_amount(raw_amount):
  try:
    return decimal.Decimal(str(raw_amount)).quantize(decimal.Decimal("0.01"))
  except (decimal.InvalidOperation, ValueError):
    return decimal.Decimal("0.00")


def _normalize_status(raw_status, fallback_status):
  status = str(raw_status or "").lower()
  if status in ("successful", "success", "completed"):
    return TRANSACTION_STATUS_SUCCESSFUL
  if status in ("failed", "failure", "cancelled"):
    return TRANSACTION_STATUS_FAILED
  if status == "pending":
    return TRANSACTION_STATUS_PENDING
  return fallback_status


def build_transaction_record(data, fallback_status):
  """
  Map a charge event's `data` object to a flutterwave_transactions row.
  Returns a dict of column -> value.
  """
  customer = data.get("customer") if isinstance(data.get("customer"), dict) else {}
  metadata = data.get("meta") or data.get("metadata")

  transaction_id = data.get("id")
  return {
    "transaction_id": str(transaction_id) if transaction_id is not None else None,
    "transaction_ref": data.get("tx_ref") or None,
    "amount": _parse_amount(data.get("amount", 0)),
    "currency": str(data.get("currency") or config.FLUTTERWAVE_DEFAULT_CURRENCY)[:3].upper(),
    "status": _normalize_status(data.get("status"), fallback_status),
    "payment_type": data.get("payment_type"),
    "customer_email": customer.get("email"),
    "customer_name": customer.get("name"),
    "customer_phone": customer.get("phone_number"),
    "metadata": json.dumps(metadata) if metadata is not None else None,
    "response_data": json.dumps(redact_sensitive_fields(data), default=str),
  }


def record_transaction(record):
  """Insert or update a transaction row, keyed by transaction_id / transaction_ref."""
  if not record["transaction_id"] and not record["transaction_ref"]:
    logger.warning("Skipping transaction record without id or tx_ref")
    return None

  db = _get_database()
  db.execute_insert_or_update(
    """
    INSERT INTO flutterwave_transactions
      (transaction_id, transaction_ref, amount, currency, status,
       payment_type, customer_email, customer_name, customer_phone,
       metadata, response_data, created_at, updated_at)
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, UTC_TIMESTAMP(), UTC_TIMESTAMP())
    ON DUPLICATE KEY UPDATE
      status = VALUES(status),
      amount = VALUES(amount),
      currency = VALUES(currency),
      payment_type = VALUES(payment_type),
      response_data = VALUES(response_data),
      updated_at = UTC_TIMESTAMP()
    """,
    (
      record["transaction_id"],
      record["transaction_ref"],
      record["amount"],
      record["currency"],
      record["status"],
      record["payment_type"],
      record["customer_email"],
      record["customer_name"],
      record["customer_phone"],
      record["metadata"],
      record["response_data"],
    ),
  )

  logger.info(
    "Flutterwave transaction recorded: transaction_id=%s, tx_ref=%s, status=%s",
    record["transaction_id"], record["transaction_ref"], record["status"],
  )
  return record


def record_successful_charge(data, envelope):
  """Success handler hook: log, then persist."""
  log_successful_charge(data, envelope)
  record_transaction(build_transaction_record(data, TRANSACTION_STATUS_SUCCESSFUL))
  return data


def record_failed_charge(data, envelope):
  """Failure handler hook: log, then persist."""
  log_failed_charge(data, envelope)
  record_transaction(build_transaction_record(data, TRANSACTION_STATUS_FAILED))
  return data
