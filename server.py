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

"""Storefront Checkout Server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence
import uuid

from absl import app as absl_app
import config
import dependencies
from exceptions import StorefrontError
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from routes.account import router as account_router
from routes.admin import router as admin_router
from routes.cart import router as cart_router
from routes.checkout import router as checkout_router
from routes.coupons import router as coupons_router
from routes.orders import router as orders_router
from routes.webhooks import router as webhooks_router
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VISITOR_COOKIE_MAX_AGE = 60 * 60 * 24 * 365

app = FastAPI(
    title="Storefront Checkout Service",
    version=config.SERVER_VERSION,
    description="Cart, checkout and order management for the storefront",
    lifespan=config.lifespan,
)


@app.exception_handler(StorefrontError)
async def storefront_exception_handler(request: Request, exc: StorefrontError):
  """Converts storefront exceptions to JSON error responses."""
  del request  # Unused.
  return JSONResponse(
      status_code=exc.status_code,
      content={"error": exc.message, "code": exc.code, **exc.extra},
  )


@app.middleware("http")
async def visitor_cookie_middleware(request: Request, call_next):
  """Issues the anonymous visitor id cookie on first contact."""
  visitor_id = request.cookies.get(dependencies.VISITOR_COOKIE)
  issued = not visitor_id
  if issued:
    visitor_id = str(uuid.uuid4())
  request.state.visitor_id = visitor_id

  response = await call_next(request)
  if issued:
    response.set_cookie(
        dependencies.VISITOR_COOKIE,
        visitor_id,
        max_age=VISITOR_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        path="/",
    )
  return response


app.include_router(cart_router)
app.include_router(coupons_router)
app.include_router(checkout_router)
app.include_router(webhooks_router)
app.include_router(orders_router)
app.include_router(account_router)
app.include_router(admin_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the Storefront Checkout Server."""
  del argv  # Unused.

  if (
      config.FLAGS.products_db_path is None
      or config.FLAGS.transactions_db_path is None
      or config.FLAGS.port is None
  ):
    logger.error(
        "Both --products_db_path, --transactions_db_path, and --port must be"
        " provided."
    )
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  if config.FLAGS.paypal_client_id and not config.FLAGS.paypal_webhook_id:
    logger.error(
        "--paypal_webhook_id is required when PayPal is configured; webhook"
        " deliveries cannot be verified without it."
    )
    sys.exit(1)

  if not config.FLAGS.admin_api_key:
    logger.warning("--admin_api_key is not set; admin endpoints are disabled.")

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


if __name__ == "__main__":
  absl_app.run(main)
