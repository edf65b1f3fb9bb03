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

"""HTTP client for the order, customer, auth and notification backend.

Every response is validated into a model before it leaves this module. Errors
are reported as `BackendError` (transport failures and unexpected statuses) or
`SubmissionError` (order creation), never as raw `httpx` exceptions.
"""

import logging
from typing import Any, Dict, List, Optional

import config
from exceptions import BackendError
from exceptions import SubmissionError
import httpx
from models import CartItem
from models import CheckoutSession
from models import DeliveryAddress
from models import MagicLinkRequestResult
from models import VerificationFailed
from models import VerificationResult
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

_verification_adapter = TypeAdapter(VerificationResult)


class BackendClient:
  """Thin async wrapper over the backend REST API."""

  def __init__(
      self,
      base_url: Optional[str] = None,
      timeout: Optional[float] = None,
      transport: Optional[httpx.AsyncBaseTransport] = None,
      auth_token: Optional[str] = None,
  ):
    self.base_url = (base_url or config.get_backend_url()).rstrip("/")
    self.timeout = timeout if timeout is not None else config.get_http_timeout()
    self.transport = transport
    self.auth_token = auth_token

  def _client(self) -> httpx.AsyncClient:
    headers = {"Accept": "application/json"}
    if self.auth_token:
      headers["Authorization"] = f"Bearer {self.auth_token}"
    return httpx.AsyncClient(
        base_url=self.base_url,
        timeout=self.timeout,
        transport=self.transport,
        headers=headers,
    )

  async def _request(
      self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
  ) -> httpx.Response:
    try:
      async with self._client() as client:
        return await client.request(method, path, json=payload)
    except httpx.RequestError as e:
      logger.error("Network error calling %s %s: %s", method, path, e)
      raise BackendError(f"Backend unreachable: {e}") from e

  async def create_order(self, payload: Dict[str, Any]) -> str:
    """Creates an order and returns its identifier.

    Args:
      payload: The order body expected by `POST /orders`.

    Returns:
      The backend identifier of the new order.

    Raises:
      SubmissionError: If the order could not be created.
    """
    try:
      response = await self._request("POST", "/orders", payload)
    except BackendError as e:
      raise SubmissionError(e.message) from e

    if response.status_code not in (200, 201):
      logger.error(
          "Order creation failed: Status %d %s",
          response.status_code,
          response.text,
      )
      raise SubmissionError(
          _error_message(response, "The order could not be created")
      )

    try:
      body = response.json()
    except ValueError as e:
      raise SubmissionError("Malformed order creation response") from e

    order_id = None
    if isinstance(body, dict):
      order_id = body.get("identify")
      if not order_id and isinstance(body.get("data"), dict):
        order_id = body["data"].get("identify")
    if not order_id:
      raise SubmissionError("Order creation response has no identifier")
    return str(order_id)

  async def list_customer_addresses(
      self, customer_id: str
  ) -> List[DeliveryAddress]:
    response = await self._request(
        "GET", f"/customers/{customer_id}/addresses"
    )
    if response.status_code != 200:
      raise BackendError(
          _error_message(response, "Could not load saved addresses"),
          status_code=response.status_code,
      )
    try:
      body = response.json()
    except ValueError as e:
      raise BackendError("Malformed saved addresses response") from e
    items = body.get("data", []) if isinstance(body, dict) else body
    addresses = []
    for item in items or []:
      try:
        addresses.append(DeliveryAddress.model_validate(_normalize_id(item)))
      except PydanticValidationError as e:
        logger.warning("Skipping malformed saved address: %s", e)
    return addresses

  async def create_customer_address(
      self, customer_id: str, address: DeliveryAddress
  ) -> DeliveryAddress:
    """Saves a new address in the customer's address book."""
    response = await self._request(
        "POST",
        f"/customers/{customer_id}/addresses",
        address.model_dump(mode="json", exclude={"id"}),
    )
    if response.status_code not in (200, 201):
      raise BackendError(
          _error_message(response, "Could not save the address"),
          status_code=response.status_code,
      )
    try:
      body = response.json()
    except ValueError as e:
      raise BackendError("Malformed saved address response") from e
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
      body = body["data"]
    try:
      return DeliveryAddress.model_validate(_normalize_id(body))
    except PydanticValidationError:
      return address

  async def request_magic_link(
      self, phone: str, store_id: str
  ) -> MagicLinkRequestResult:
    response = await self._request(
        "POST",
        "/auth/whatsapp/request",
        {"phone": phone, "store_id": store_id},
    )
    if response.status_code not in (200, 201):
      return MagicLinkRequestResult(
          success=False,
          message=_error_message(response, "Could not send the access link"),
      )
    try:
      return MagicLinkRequestResult.model_validate(response.json())
    except (ValueError, PydanticValidationError) as e:
      logger.error("Malformed magic link response: %s", e)
      raise BackendError("Malformed magic link response") from e

  async def verify_magic_link(self, token: str) -> VerificationResult:
    """Verifies a magic-link token.

    A definitive answer from the backend is returned as `VerificationOk` or
    `VerificationFailed`. Transport failures and server errors raise
    `BackendError` because their outcome is unknown.
    """
    response = await self._request(
        "POST", "/auth/whatsapp/verify", {"token": token}
    )
    if response.status_code >= 500:
      raise BackendError(
          f"Verification service error: Status {response.status_code}",
          status_code=response.status_code,
      )
    try:
      body = response.json()
    except ValueError as e:
      raise BackendError("Malformed verification response") from e

    body = _tag_verification(body)
    if response.status_code != 200 and isinstance(body, dict):
      body.setdefault("status", "error")
      body.setdefault("code", "VERIFICATION_FAILED")
    try:
      return _verification_adapter.validate_python(body)
    except PydanticValidationError as e:
      logger.error("Unexpected verification payload: %s", e)
      return VerificationFailed(
          code="VERIFICATION_FAILED", message="Unexpected verification payload"
      )

  async def send_order_confirmation(
      self,
      order_id: str,
      phone: str,
      items: List[CartItem],
      session: CheckoutSession,
      store_name: str,
      total: Any,
  ) -> None:
    payload = {
        "order_id": order_id,
        "phone": phone,
        "store_name": store_name,
        "customer_name": (
            session.customer_data.name if session.customer_data else ""
        ),
        "items": [
            {
                "name": item.name,
                "quantity": item.quantity,
                "price": str(item.price),
            }
            for item in items
        ],
        "total": str(total),
        "payment_method": (
            session.payment.method.value if session.payment else None
        ),
        "delivery_address": (
            session.selected_address.model_dump(mode="json")
            if session.selected_address
            else None
        ),
    }
    response = await self._request(
        "POST", "/notifications/order-confirmation", payload
    )
    if response.status_code not in (200, 201, 202):
      raise BackendError(
          _error_message(response, "Could not send the confirmation"),
          status_code=response.status_code,
      )


def _tag_verification(body: Any) -> Any:
  """Maps a `{success, jwt, user, message}` answer onto the tagged result."""
  if not isinstance(body, dict) or "status" in body or "success" not in body:
    return body
  if body.get("success") and body.get("jwt") and body.get("user"):
    return {"status": "ok", "token": body["jwt"], "user": body["user"]}
  return {
      "status": "error",
      "code": body.get("code") or "VERIFICATION_FAILED",
      "message": body.get("message") or "",
  }


def _normalize_id(item: Dict[str, Any]) -> Dict[str, Any]:
  if isinstance(item, dict) and item.get("id") is not None:
    return {**item, "id": str(item["id"])}
  return item


def _error_message(response: httpx.Response, default: str) -> str:
  try:
    body = response.json()
  except ValueError:
    return default
  if isinstance(body, dict):
    return body.get("message") or body.get("detail") or default
  return default
