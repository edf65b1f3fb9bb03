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

"""Magic-link callback routes.

The link sent over WhatsApp points to `/auth/whatsapp/callback`, carrying the
store in the query string and the token either in the path or, when the
backend already verified it, as a `token` plus `user` query pair.
"""

from typing import Any, Optional

import dependencies
from exceptions import HandshakeNotFoundError
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Path
from fastapi import Query
from models import CallbackParams
from models import dump
from services.auth_resolver import AuthenticationResolver
from services.backend_client import BackendClient
from services.handshake import HandshakeRegistry
from services.handshake import MagicLinkHandshake
from sqlalchemy.orm import sessionmaker

router = APIRouter(prefix="/auth/whatsapp")


async def _run_callback(
    store_id: str,
    params: CallbackParams,
    resolver: AuthenticationResolver,
    backend: BackendClient,
    session_factory: Optional[sessionmaker],
    registry: HandshakeRegistry,
) -> dict[str, Any]:
  handshake = MagicLinkHandshake(
      store_id, resolver, backend, session_factory=session_factory
  )
  registry.put(handshake)
  view = await handshake.start(params)
  registry.release(handshake)
  return dump(view)


@router.get("/callback", operation_id="magic_link_callback")
async def magic_link_callback(
    store_id: str = Query(...),
    code: Optional[str] = Query(None),
    message: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
    user: Optional[str] = Query(None),
    resolver: AuthenticationResolver = Depends(
        dependencies.get_auth_resolver
    ),
    backend: BackendClient = Depends(dependencies.get_backend_client),
    session_factory: Optional[sessionmaker] = Depends(
        dependencies.get_session_factory
    ),
    registry: HandshakeRegistry = Depends(
        dependencies.get_handshake_registry
    ),
) -> dict[str, Any]:
  """Handles a callback carrying an error code or a verified token pair."""
  params = CallbackParams(code=code, message=message, token=token, user=user)
  return await _run_callback(
      store_id, params, resolver, backend, session_factory, registry
  )


@router.get("/callback/{path_token}", operation_id="magic_link_token_callback")
async def magic_link_token_callback(
    path_token: str = Path(...),
    store_id: str = Query(...),
    resolver: AuthenticationResolver = Depends(
        dependencies.get_auth_resolver
    ),
    backend: BackendClient = Depends(dependencies.get_backend_client),
    session_factory: Optional[sessionmaker] = Depends(
        dependencies.get_session_factory
    ),
    registry: HandshakeRegistry = Depends(
        dependencies.get_handshake_registry
    ),
) -> dict[str, Any]:
  """Handles a callback carrying a raw token to verify with the backend."""
  params = CallbackParams(path_token=path_token)
  return await _run_callback(
      store_id, params, resolver, backend, session_factory, registry
  )


def _current(
    registry: HandshakeRegistry, device_id: str
) -> MagicLinkHandshake:
  handshake = registry.get(device_id)
  if handshake is None:
    raise HandshakeNotFoundError()
  return handshake


@router.get("/handshake", operation_id="get_handshake")
async def get_handshake(
    device_id: str = Depends(dependencies.device_header),
    registry: HandshakeRegistry = Depends(
        dependencies.get_handshake_registry
    ),
) -> dict[str, Any]:
  return dump(_current(registry, device_id).view())


@router.post("/handshake/retry", operation_id="retry_handshake")
async def retry_handshake(
    device_id: str = Depends(dependencies.device_header),
    registry: HandshakeRegistry = Depends(
        dependencies.get_handshake_registry
    ),
) -> dict[str, Any]:
  """Retries verification after the backoff, while retries remain."""
  handshake = _current(registry, device_id)
  view = await handshake.retry()
  registry.release(handshake)
  return dump(view)


@router.post("/handshake/cancel", operation_id="cancel_handshake")
async def cancel_handshake(
    device_id: str = Depends(dependencies.device_header),
    registry: HandshakeRegistry = Depends(
        dependencies.get_handshake_registry
    ),
) -> dict[str, Any]:
  view = _current(registry, device_id).view()
  registry.discard(device_id)
  return dump(view)


@router.post("/handshake/return", operation_id="return_to_checkout")
async def return_to_checkout(
    device_id: str = Depends(dependencies.device_header),
    registry: HandshakeRegistry = Depends(
        dependencies.get_handshake_registry
    ),
) -> dict[str, Any]:
  """Abandons the handshake and sends the customer back to authentication."""
  handshake = _current(registry, device_id)
  redirect = await handshake.return_to_checkout()
  registry.discard(device_id)
  return dump(redirect)
