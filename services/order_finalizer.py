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

"""Submission of a completed checkout session as an order.

Creating the order is the only required step; its failure leaves the session
intact so the customer can retry. Saving a new address to the customer's
address book and sending the confirmation notification are best-effort side
effects whose failures are only logged.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional, Set, Tuple

from enums import CheckoutStep
from enums import OrderType
from exceptions import SideEffectError
from exceptions import StepBlockedError
from exceptions import StoreClosedError
from exceptions import SubmissionInProgressError
from exceptions import ValidationError
from models import Cart
from models import CheckoutSession
from models import OrderReceipt
from models import Redirect
from services.backend_client import BackendClient
from services.cart import CartProvider
from services.orchestrator import CheckoutOrchestrator

logger = logging.getLogger(__name__)


def build_order_payload(session: CheckoutSession, cart: Cart) -> Dict[str, Any]:
  """Builds the `POST /orders` body from the session and the cart."""
  payload: Dict[str, Any] = {
      "token_company": session.store_id,
      "type": (
          OrderType.DELIVERY.value
          if session.requires_delivery
          else OrderType.LOCAL.value
      ),
      "payment_method": session.payment.method.value,
      "products": [
          {
              "identify": item.identify,
              "quantity": item.quantity,
              "notes": item.notes,
              "additionals": [
                  {"id": additional.id, "quantity": additional.quantity}
                  for additional in item.additionals
              ],
          }
          for item in cart.items
      ],
      "comment": session.order_notes or None,
  }
  if session.customer_data is not None:
    payload["customer"] = session.customer_data.model_dump(mode="json")
  if session.customer_id:
    payload["customer_id"] = session.customer_id
  if session.payment.change_amount is not None:
    payload["change_amount"] = str(session.payment.change_amount)
  if session.requires_delivery and session.selected_address is not None:
    address = session.selected_address
    if address.id:
      payload["customer_address_id"] = address.id
    payload["customer_address"] = address.model_dump(
        mode="json", exclude={"id"}
    )
  if session.table_id:
    payload["table_id"] = session.table_id
  return payload


class OrderFinalizer:
  """Turns the session at `confirmation` plus the cart into an order."""

  def __init__(
      self,
      orchestrator: CheckoutOrchestrator,
      cart: CartProvider,
      backend: BackendClient,
      notifier: Optional[BackendClient] = None,
      in_flight: Optional[Set[Tuple[str, str]]] = None,
  ):
    self.orchestrator = orchestrator
    self.cart = cart
    self.backend = backend
    self.notifier = notifier or backend
    # Shared between finalizers of the same process; keyed by device and
    # store.
    self.in_flight = in_flight if in_flight is not None else set()

  @property
  def submitting(self) -> bool:
    device_id = self.orchestrator.store.device_id
    return any(key[0] == device_id for key in self.in_flight)

  async def submit(
      self, store_name: str = "", is_store_open: bool = True
  ) -> OrderReceipt:
    """Submits the order.

    Args:
      store_name: Name of the store, used in the confirmation message.
      is_store_open: Whether the store currently accepts orders.

    Returns:
      The receipt with the new order id and the tracking redirect.

    Raises:
      SubmissionInProgressError: If a submission is already in flight.
      StoreClosedError: If the store is closed.
      StepBlockedError: If the session has not reached confirmation.
      ValidationError: If the cart is empty.
      SubmissionError: If the backend did not create the order.
    """
    session = await self.orchestrator.get_state()
    key = (self.orchestrator.store.device_id, session.store_id)
    if key in self.in_flight:
      raise SubmissionInProgressError()
    self.in_flight.add(key)
    try:
      if not is_store_open:
        raise StoreClosedError()
      reason = self.orchestrator.gate.blocking_reason(
          CheckoutStep.CONFIRMATION, session
      )
      if reason is None and session.current_step != CheckoutStep.CONFIRMATION:
        reason = "checkout has not reached confirmation"
      if reason:
        raise StepBlockedError(CheckoutStep.CONFIRMATION.value, reason)
      cart = await self.cart.get_cart(session.store_id)
      if not cart.items:
        raise ValidationError({"cart": "The cart is empty"})
    except BaseException:
      self.in_flight.discard(key)
      raise

    # Leaving the page must not abandon an order half-way.
    return await asyncio.shield(self._place(key, session, cart, store_name))

  async def _place(
      self,
      key: Tuple[str, str],
      session: CheckoutSession,
      cart: Cart,
      store_name: str,
  ) -> OrderReceipt:
    try:
      payload = build_order_payload(session, cart)
      logger.info(
          "Submitting order for session %s with %d items",
          session.id,
          len(cart.items),
      )
      order_id = await self.backend.create_order(payload)
      logger.info("Order %s created for session %s", order_id, session.id)

      address_saved = False
      address = session.selected_address
      if session.customer_id and address is not None and not address.id:
        address_saved = await self._best_effort(
            "Saving the delivery address",
            self.backend.create_customer_address(session.customer_id, address),
        )

      notification_sent = False
      phone = session.customer_data.phone if session.customer_data else ""
      if phone:
        notification_sent = await self._best_effort(
            "Sending the order confirmation",
            self.notifier.send_order_confirmation(
                order_id, phone, cart.items, session, store_name, cart.total
            ),
        )

      await self._best_effort(
          "Clearing the cart", self.cart.clear(session.store_id)
      )
      await self.orchestrator.complete()
      return OrderReceipt(
          order_id=order_id,
          redirect=Redirect(url=f"/orders/{order_id}"),
          address_saved=address_saved,
          notification_sent=notification_sent,
      )
    finally:
      self.in_flight.discard(key)

  async def _best_effort(self, description: str, action: Awaitable) -> bool:
    try:
      await action
    except Exception as e:  # pylint: disable=broad-exception-caught
      error = SideEffectError(f"{description} failed: {e}")
      logger.warning("Order side effect failed: %s", error.message)
      return False
    return True
