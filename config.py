#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Shared configuration and startup logic for the storefront server.

Every setting is an absl flag whose default is read from the environment, so
deployments can configure the server either way.
"""

import contextlib
import os
from typing import Any

from absl import flags
import db
from fastapi import FastAPI

FLAGS = flags.FLAGS

SERVER_VERSION = "1.0.0"


def _env_bool(name: str) -> bool:
  return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string(
      "products_db_path",
      os.environ.get("PRODUCTS_DB_PATH"),
      "Path to products (catalog) DB",
  )
  flags.DEFINE_string(
      "transactions_db_path",
      os.environ.get("TRANSACTIONS_DB_PATH"),
      "Path to transactions DB",
  )
  flags.DEFINE_integer(
      "port", int(os.environ.get("PORT", "0")) or None, "Port to run on"
  )
  flags.DEFINE_string(
      "site_url",
      os.environ.get("SITE_URL", "http://localhost:4321"),
      "Public storefront URL used for provider return links",
  )
  flags.DEFINE_string(
      "site_name",
      os.environ.get("SITE_NAME", "BabyProps"),
      "Brand name shown to payers and in emails",
  )
  flags.DEFINE_string(
      "currency", os.environ.get("CURRENCY", "USD"), "ISO 4217 store currency"
  )
  flags.DEFINE_string(
      "admin_api_key",
      os.environ.get("ADMIN_API_KEY"),
      "Shared secret required in the X-Admin-Key header of admin endpoints",
  )
  flags.DEFINE_float(
      "http_timeout_seconds",
      float(os.environ.get("HTTP_TIMEOUT_SECONDS", "15")),
      "Timeout for outbound payment and email provider calls",
  )
  # PayPal
  flags.DEFINE_string(
      "paypal_client_id",
      os.environ.get("PAYPAL_CLIENT_ID")
      or os.environ.get("PUBLIC_PAYPAL_CLIENT_ID"),
      "PayPal REST client id",
  )
  flags.DEFINE_string(
      "paypal_client_secret",
      os.environ.get("PAYPAL_CLIENT_SECRET"),
      "PayPal REST client secret",
  )
  flags.DEFINE_boolean(
      "paypal_sandbox", _env_bool("PAYPAL_SANDBOX"), "Use the PayPal sandbox"
  )
  flags.DEFINE_string(
      "paypal_webhook_id",
      os.environ.get("PAYPAL_WEBHOOK_ID"),
      "PayPal webhook id used for signature verification",
  )
  # Stripe
  flags.DEFINE_string(
      "stripe_secret_key", os.environ.get("STRIPE_SECRET_KEY"), "Stripe key"
  )
  flags.DEFINE_string(
      "stripe_publishable_key",
      os.environ.get("PUBLIC_STRIPE_PUBLISHABLE_KEY"),
      "Stripe publishable key",
  )
  # Bank transfer
  flags.DEFINE_boolean(
      "enable_bank_transfer",
      _env_bool("ENABLE_BANK_TRANSFER"),
      "Offer manual bank transfer",
  )
  flags.DEFINE_string("bank_name", os.environ.get("BANK_NAME", ""), "Bank")
  flags.DEFINE_string(
      "bank_account_name", os.environ.get("BANK_ACCOUNT_NAME", ""), "Payee"
  )
  flags.DEFINE_string(
      "bank_account_number",
      os.environ.get("BANK_ACCOUNT_NUMBER", ""),
      "Account number",
  )
  flags.DEFINE_string(
      "bank_routing_number",
      os.environ.get("BANK_ROUTING_NUMBER", ""),
      "Routing number",
  )
  flags.DEFINE_string(
      "bank_swift_code", os.environ.get("BANK_SWIFT_CODE", ""), "SWIFT code"
  )
  flags.DEFINE_string("bank_iban", os.environ.get("BANK_IBAN", ""), "IBAN")
  flags.DEFINE_string(
      "bank_transfer_instructions",
      os.environ.get(
          "BANK_TRANSFER_INSTRUCTIONS",
          "Please include your order number as payment reference.",
      ),
      "Instructions shown with the bank details",
  )
  # Email
  flags.DEFINE_string(
      "resend_api_key", os.environ.get("RESEND_API_KEY"), "Resend API key"
  )
  flags.DEFINE_string(
      "email_from",
      os.environ.get("EMAIL_FROM", "noreply@example.com"),
      "Sender address for transactional email",
  )
except flags.DuplicateFlagError:
  pass


def get(name: str) -> Any:
  """Returns a flag value, falling back to its default before parsing.

  Test runners other than absltest import the app without parsing flags, and
  attribute access on unparsed FlagValues raises.
  """
  if FLAGS.is_parsed():
    return getattr(FLAGS, name)
  return FLAGS[name].value


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for initializing databases."""
  del app  # Unused.
  # In tests the session dependencies are overridden and these are unset.
  products_path = get("products_db_path")
  transactions_path = get("transactions_db_path")
  if products_path and transactions_path:
    await db.manager.init_dbs(products_path, transactions_path)
  yield
  await db.manager.close()
