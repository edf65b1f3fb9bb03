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

"""Shared configuration and startup logic for the checkout service."""

import contextlib
import datetime
from absl import flags
import db
from fastapi import FastAPI

FLAGS = flags.FLAGS

SERVER_VERSION = "2026-01-11"

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string("checkout_db_path", None, "Path to the checkout DB")
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string(
      "backend_url",
      "http://localhost:8000/api/v1",
      "Base URL of the order, customer and auth backend",
  )
  flags.DEFINE_string(
      "postal_code_url",
      "https://viacep.com.br/ws",
      "Base URL of the postal code lookup service",
  )
  flags.DEFINE_integer(
      "session_ttl_minutes", 30, "Inactivity TTL of a checkout session"
  )
  flags.DEFINE_integer(
      "credential_ttl_hours", 24, "Lifetime of an issued auth credential"
  )
  flags.DEFINE_integer(
      "handshake_max_retries", 3, "Retries allowed for a failed magic link"
  )
  flags.DEFINE_float(
      "handshake_retry_backoff_seconds",
      1.0,
      "Delay before each magic link verification retry",
  )
  flags.DEFINE_float(
      "handshake_redirect_delay_seconds",
      2.0,
      "Delay before redirecting back to checkout after authentication",
  )
  flags.DEFINE_float(
      "http_timeout_seconds", 5.0, "Timeout for outbound HTTP calls"
  )
except flags.DuplicateFlagError:
  pass


def _flag_value(name: str):
  # FLAGS[name].value is readable before absl parses argv (e.g. under pytest).
  return FLAGS[name].value


def get_backend_url() -> str:
  return _flag_value("backend_url").rstrip("/")


def get_postal_code_url() -> str:
  return _flag_value("postal_code_url").rstrip("/")


def get_session_ttl() -> datetime.timedelta:
  return datetime.timedelta(minutes=_flag_value("session_ttl_minutes"))


def get_credential_ttl() -> datetime.timedelta:
  return datetime.timedelta(hours=_flag_value("credential_ttl_hours"))


def get_handshake_max_retries() -> int:
  return _flag_value("handshake_max_retries")


def get_handshake_retry_backoff() -> float:
  return _flag_value("handshake_retry_backoff_seconds")


def get_handshake_redirect_delay() -> float:
  return _flag_value("handshake_redirect_delay_seconds")


def get_http_timeout() -> float:
  return _flag_value("http_timeout_seconds")


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for initializing the checkout database."""
  del app  # Unused.
  # In tests the flag is unset and the caller overrides the DB dependencies.
  if _flag_value("checkout_db_path"):
    await db.manager.init_db(_flag_value("checkout_db_path"))
  yield
  await db.manager.close()
