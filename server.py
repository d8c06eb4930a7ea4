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

"""Multi-tenant shop orders server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence
from absl import app as absl_app
import config
from exceptions import ErrorKind
from exceptions import ShopError
from exceptions import ValidationError
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from routes.admin import router as admin_router
from routes.cart import router as cart_router
from routes.orders import router as orders_router
from routes.webhook import router as webhook_router
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.UPSTREAM_GATEWAY: 500,
    ErrorKind.SIGNATURE: 400,
}

app = FastAPI(
    title="Shop Orders Service",
    version="1.0.0",
    description="Cart, order lifecycle, inventory and Stripe payments",
    lifespan=config.lifespan,
)


@app.exception_handler(ShopError)
async def shop_exception_handler(request: Request, exc: ShopError):
  """Converts domain exceptions to JSON responses."""
  status_code = HTTP_STATUS_BY_KIND.get(exc.kind, 500)
  if status_code >= 500:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
  else:
    logger.info(
        "%s %s rejected (%s): %s",
        request.method,
        request.url.path,
        exc.kind.value,
        exc.message,
    )
  content = {"detail": exc.message, "code": exc.kind.value}
  if isinstance(exc, ValidationError) and exc.details:
    content["details"] = exc.details
  return JSONResponse(status_code=status_code, content=content)


app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(admin_router)
app.include_router(webhook_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the shop orders server."""
  del argv  # Unused.

  if config.FLAGS.database_path is None or config.FLAGS.port is None:
    logger.error("Both --database_path and --port must be provided.")
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  if not config.FLAGS.stripe_webhook_secret:
    logger.warning(
        "No --stripe_webhook_secret set; all webhook deliveries will be"
        " rejected."
    )

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


if __name__ == "__main__":
  absl_app.run(main)
