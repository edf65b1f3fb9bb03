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

"""Menu Checkout Server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence
from absl import app as absl_app
import config
from exceptions import CheckoutError
from exceptions import StepBlockedError
from exceptions import ValidationError
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from routes.auth_callback import router as auth_callback_router
from routes.checkout import router as checkout_router
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Menu Checkout Service",
    version=config.SERVER_VERSION,
    description="Checkout session orchestrator for the digital menu",
    lifespan=config.lifespan,
)


@app.exception_handler(CheckoutError)
async def checkout_exception_handler(request: Request, exc: CheckoutError):
  """Handles checkout exceptions and converts them to JSON responses."""
  del request  # Unused.
  content = {"detail": exc.message, "code": exc.code}
  if isinstance(exc, ValidationError):
    content["field_errors"] = exc.field_errors
  elif isinstance(exc, StepBlockedError):
    content["step"] = exc.step
    content["reason"] = exc.reason
  return JSONResponse(status_code=exc.status_code, content=content)


app.include_router(checkout_router)
app.include_router(auth_callback_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the Menu Checkout Server."""
  del argv  # Unused.

  if config.FLAGS.checkout_db_path is None or config.FLAGS.port is None:
    logger.error("Both --checkout_db_path and --port must be provided.")
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


if __name__ == "__main__":
  absl_app.run(main)
