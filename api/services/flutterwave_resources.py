"""
Flutterwave Bridge -- Resource Endpoints

Thin per-resource wrappers over FlutterwaveApiClient. Each method is one
path template; ids interpolated into paths are validated first so nothing
the caller passes can reshape the URL.

  PaymentResource              -- payments, transactions, refunds
  TransferResource             -- single and bulk transfers
  SubscriptionResource         -- payment plan subscriptions
  VirtualAccountResource       -- virtual account numbers
  AccountVerificationResource  -- bank account / BVN / card BIN lookups
"""

from services.endpoint_sanitizer import (
  validate_card_bin,
  validate_digits_only,
  validate_path_identifier,
)


class _ResourceBase:

  def __init__(self, api_client):
    self.api_client = api_client


class PaymentResource(_ResourceBase):

  async def initialize(self, payment_details):
    return await self.api_client.post("payments", payment_details)

  async def verify(self, transaction_id):
    transaction_id = validate_path_identifier(transaction_id)
    return await self.api_client.get(f"transactions/{transaction_id}/verify")

  async def get_transaction(self, transaction_id):
    transaction_id = validate_path_identifier(transaction_id)
    return await self.api_client.get(f"transactions/{transaction_id}")

  async def get_transaction_by_reference(self, transaction_reference):
    # tx_ref goes in the query string, httpx encodes it
    return await self.api_client.get("transactions", {"tx_ref": transaction_reference})

  async def list_transactions(self, filters=None):
    return await self.api_client.get("transactions", filters or {})

  async def get_transaction_fees(self, fee_query):
    return await self.api_client.post("transactions/fee", fee_query)

  async def resend_webhook(self, transaction_id):
    transaction_id = validate_path_identifier(transaction_id)
    return await self.api_client.post(f"transactions/{transaction_id}/resend-webhook")

  async def refund(self, refund_details):
    return await self.api_client.post("transactions/refund", refund_details)

  async def get_refund(self, refund_id):
    refund_id = validate_path_identifier(refund_id, "refund ID")
    return await self.api_client.get(f"refunds/{refund_id}")

  async def list_refunds(self, filters=None):
    return await self.api_client.get("refunds", filters or {})


class TransferResource(_ResourceBase):

  async def create(self, transfer_details):
    return await self.api_client.post("transfers", transfer_details)

  async def create_bulk(self, bulk_transfer_details):
    return await self.api_client.post("bulk-transfers", bulk_transfer_details)

  async def get(self, transfer_id):
    transfer_id = validate_path_identifier(transfer_id, "transfer ID")
    return await self.api_client.get(f"transfers/{transfer_id}")

  async def list(self, filters=None):
    return await self.api_client.get("transfers", filters or {})

  async def get_rates(self, rate_query):
    return await self.api_client.get("transfers/rates", rate_query)

  async def get_fees(self, fee_query):
    return await self.api_client.get("transfers/fee", fee_query)

  async def retry(self, transfer_id):
    transfer_id = validate_path_identifier(transfer_id, "transfer ID")
    return await self.api_client.post(f"transfers/{transfer_id}/retry")

  async def get_bulk_status(self, batch_id):
    batch_id = validate_path_identifier(batch_id, "batch ID")
    return await self.api_client.get(f"bulk-transfers/{batch_id}")


class SubscriptionResource(_ResourceBase):

  async def create(self, subscription_details):
    return await self.api_client.post("subscriptions", subscription_details)

  async def get(self, subscription_id):
    subscription_id = validate_path_identifier(subscription_id, "subscription ID")
    return await self.api_client.get(f"subscriptions/{subscription_id}")

  async def list(self, filters=None):
    return await self.api_client.get("subscriptions", filters or {})

  async def cancel(self, subscription_id):
    subscription_id = validate_path_identifier(subscription_id, "subscription ID")
    return await self.api_client.put(f"subscriptions/{subscription_id}/cancel")

  async def activate(self, subscription_id):
    subscription_id = validate_path_identifier(subscription_id, "subscription ID")
    return await self.api_client.put(f"subscriptions/{subscription_id}/activate")


class VirtualAccountResource(_ResourceBase):

  async def create(self, account_details):
    return await self.api_client.post("virtual-account-numbers", account_details)

  async def create_bulk(self, bulk_account_details):
    return await self.api_client.post("virtual-account-numbers/bulk", bulk_account_details)

  async def get(self, account_id):
    account_id = validate_path_identifier(account_id, "account ID")
    return await self.api_client.get(f"virtual-account-numbers/{account_id}")

  async def list(self, filters=None):
    return await self.api_client.get("virtual-account-numbers", filters or {})

  async def update(self, account_id, account_details):
    account_id = validate_path_identifier(account_id, "account ID")
    return await self.api_client.put(f"virtual-account-numbers/{account_id}", account_details)

  async def delete(self, account_id):
    account_id = validate_path_identifier(account_id, "account ID")
    return await self.api_client.delete(f"virtual-account-numbers/{account_id}")


class AccountVerificationResource(_ResourceBase):

  async def verify_bank_account(self, account_details):
    return await self.api_client.post("accounts/resolve", account_details)

  async def verify_bvn(self, bvn_details):
    return await self.api_client.post("kyc/bvn", bvn_details)

  async def verify_card_bin(self, card_bin):
    card_bin = validate_card_bin(card_bin)
    return await self.api_client.get(f"card-bins/{card_bin}")

  async def verify_account_number(self, account_number, bank_code):
    validate_digits_only(account_number, "account number")
    validate_digits_only(bank_code, "bank code")
    return await self.verify_bank_account({
      "account_number": account_number,
      "account_bank": bank_code,
    })

  async def get_banks(self, country=None):
    query = {"country": country} if country else {}
    return await self.api_client.get("banks", query)

  async def get_bank_branches(self, bank_id):
    bank_id = validate_path_identifier(bank_id, "bank ID")
    return await self.api_client.get(f"banks/{bank_id}/branches")
