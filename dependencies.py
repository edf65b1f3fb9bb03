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

"""FastAPI dependencies for the checkout service.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Device identification (X-Device-Id header).
- Stores scoped to the device (sessions, credentials, cart).
- Service instantiation (orchestrator, resolvers, finalizer, HTTP clients).
- Process-wide state: the in-memory session fallback, the handshake registry
  and the order submission latch.
"""

import re
from typing import Optional, Set, Tuple

import db
from fastapi import Depends
from fastapi import Header
from fastapi import HTTPException
from services.address_resolver import AddressResolver
from services.auth_resolver import AuthenticationResolver
from services.backend_client import BackendClient
from services.cart import CartProvider
from services.credential_store import CredentialStore
from services.handshake import HandshakeRegistry
from services.order_finalizer import OrderFinalizer
from services.orchestrator import CheckoutOrchestrator
from services.payment_selector import PaymentSelector
from services.postal_code_client import PostalCodeClient
from services.session_store import MemoryMap
from services.session_store import SessionStore
from sqlalchemy.orm import sessionmaker

_DEVICE_ID_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,128}$")

_memory_fallback: MemoryMap = {}
_handshakes = HandshakeRegistry()
_orders_in_flight: Set[Tuple[str, str]] = set()


async def device_header(x_device_id: str = Header(...)) -> str:
  """Extracts and validates the anonymous device identifier."""
  if not _DEVICE_ID_RE.match(x_device_id):
    raise HTTPException(status_code=400, detail="Invalid X-Device-Id header")
  return x_device_id


def get_session_factory() -> Optional[sessionmaker]:
  """Dependency provider for the checkout DB session factory."""
  return db.manager.session_factory


def get_memory_fallback() -> MemoryMap:
  return _memory_fallback


def get_handshake_registry() -> HandshakeRegistry:
  return _handshakes


def get_orders_in_flight() -> Set[Tuple[str, str]]:
  return _orders_in_flight


def get_session_store(
    device_id: str = Depends(device_header),
    session_factory: Optional[sessionmaker] = Depends(get_session_factory),
    memory: MemoryMap = Depends(get_memory_fallback),
) -> SessionStore:
  """Dependency provider for the device's SessionStore."""
  return SessionStore(session_factory, device_id, memory=memory)


def get_credential_store(
    device_id: str = Depends(device_header),
    session_factory: Optional[sessionmaker] = Depends(get_session_factory),
) -> CredentialStore:
  return CredentialStore(session_factory, device_id)


def get_cart_provider(
    device_id: str = Depends(device_header),
    session_factory: Optional[sessionmaker] = Depends(get_session_factory),
) -> CartProvider:
  return CartProvider(session_factory, device_id)


async def get_backend_client(
    store_id: str,
    credentials: CredentialStore = Depends(get_credential_store),
) -> BackendClient:
  """Dependency provider for the backend client.

  Requests carry the device's credential for the store when there is one.
  """
  credential = await credentials.get(store_id)
  return BackendClient(auth_token=credential.jwt if credential else None)


def get_postal_code_client() -> PostalCodeClient:
  return PostalCodeClient()


def get_orchestrator(
    store: SessionStore = Depends(get_session_store),
) -> CheckoutOrchestrator:
  """Dependency provider for an orchestrator that has not resumed yet."""
  return CheckoutOrchestrator(store)


async def get_active_orchestrator(
    store_id: str,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
) -> CheckoutOrchestrator:
  """Dependency provider for an orchestrator bound to the live session."""
  await orchestrator.resume(store_id)
  return orchestrator


def get_auth_resolver(
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    credentials: CredentialStore = Depends(get_credential_store),
    backend: BackendClient = Depends(get_backend_client),
) -> AuthenticationResolver:
  return AuthenticationResolver(orchestrator, credentials, backend)


async def get_active_auth_resolver(
    store_id: str,
    resolver: AuthenticationResolver = Depends(get_auth_resolver),
) -> AuthenticationResolver:
  await resolver.orchestrator.resume(store_id)
  return resolver


def get_address_resolver(
    orchestrator: CheckoutOrchestrator = Depends(get_active_orchestrator),
    backend: BackendClient = Depends(get_backend_client),
    postal_codes: PostalCodeClient = Depends(get_postal_code_client),
) -> AddressResolver:
  return AddressResolver(orchestrator, backend, postal_codes)


def get_payment_selector(
    orchestrator: CheckoutOrchestrator = Depends(get_active_orchestrator),
) -> PaymentSelector:
  return PaymentSelector(orchestrator)


def get_order_finalizer(
    orchestrator: CheckoutOrchestrator = Depends(get_active_orchestrator),
    cart: CartProvider = Depends(get_cart_provider),
    backend: BackendClient = Depends(get_backend_client),
    in_flight: Set[Tuple[str, str]] = Depends(get_orders_in_flight),
) -> OrderFinalizer:
  """Dependency provider for OrderFinalizer."""
  return OrderFinalizer(orchestrator, cart, backend, in_flight=in_flight)
