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

"""Checkout orchestrator: the state machine sequencing a checkout session.

Every operation works on a copy of the current session, validates it against
the step gate, and only then recomputes the completed steps, extends the
expiry and persists the result. A rejected operation therefore leaves the
session exactly as it was before the call.
"""

import logging
import re
from typing import Any, Dict, Optional

from enums import STEP_ORDER
from enums import AuthenticationMethod
from enums import CheckoutStep
from exceptions import SessionNotFoundError
from exceptions import StepBlockedError
from exceptions import ValidationError
from models import CheckoutSession
from models import CustomerData
from models import DeliveryAddress
from models import PaymentSelection
from models import StepTransition
from services.session_store import SessionStore
from services.step_gate import StepGate

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 500
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_customer_data(data: CustomerData) -> CustomerData:
  """Validates guest contact data and returns a normalized copy."""
  errors = {}
  name = data.name.strip()
  if not name:
    errors["name"] = "Name is required"
  elif len(name) < 2:
    errors["name"] = "Name must have at least 2 characters"

  digits = re.sub(r"\D", "", data.phone or "")
  if not digits:
    errors["phone"] = "Phone is required"
  elif len(digits) not in (10, 11):
    errors["phone"] = "Phone must have 10 or 11 digits"

  email = (data.email or "").strip()
  if email and not _EMAIL_RE.match(email):
    errors["email"] = "Email is invalid"

  if errors:
    raise ValidationError(errors)
  return CustomerData(name=name, phone=digits, email=email)


class CheckoutOrchestrator:
  """Sequences authentication, data, address and payment into a session."""

  def __init__(self, store: SessionStore, gate: Optional[StepGate] = None):
    self.store = store
    self.gate = gate or StepGate()
    self._session: Optional[CheckoutSession] = None

  async def start(
      self,
      store_id: str,
      requires_delivery: Optional[bool] = None,
      customer_id: Optional[str] = None,
      table_id: Optional[str] = None,
  ) -> CheckoutSession:
    """Resumes the live session of the store, or creates one lazily."""
    session = await self.store.restore(store_id)
    if session is None:
      if requires_delivery is None:
        requires_delivery = True
      self._session = await self.store.create(
          store_id,
          requires_delivery=requires_delivery,
          customer_id=customer_id,
          table_id=table_id,
      )
      return self._session

    self._session = session
    update: Dict[str, Any] = {}
    if (
        requires_delivery is not None
        and requires_delivery != session.requires_delivery
    ):
      update["requires_delivery"] = requires_delivery
    if customer_id and not session.customer_id:
      update["customer_id"] = customer_id
    if table_id and table_id != session.table_id:
      update["table_id"] = table_id
    if update:
      return await self._commit(session.model_copy(update=update))
    return session

  async def resume(self, store_id: str) -> CheckoutSession:
    """Restores the live session of the store without creating one."""
    session = await self.store.restore(store_id)
    if session is None:
      raise SessionNotFoundError()
    self._session = session
    return session

  async def get_state(self) -> CheckoutSession:
    return await self._current()

  async def advance(self) -> CheckoutSession:
    """Moves to the next step or raises `StepBlockedError` without changes."""
    session = await self._current()
    current = CheckoutStep(session.current_step)
    if current == CheckoutStep.CONFIRMATION:
      raise StepBlockedError(
          current.value, "confirmation is the final step"
      )

    target = self.gate.next_step(session)
    reason = self._entry_reason(target, session)
    if reason:
      logger.info(
          "Session %s blocked from %s: %s", session.id, target.value, reason
      )
      raise StepBlockedError(target.value, reason)

    logger.info(
        "Session %s advancing %s -> %s", session.id, current.value,
        target.value
    )
    return await self._commit(
        session.model_copy(update={"current_step": target})
    )

  async def go_to(self, step: CheckoutStep) -> StepTransition:
    """Jumps to `step` if allowed; otherwise stays put and reports why."""
    session = await self._current()
    step = CheckoutStep(step)
    if step == session.current_step:
      return StepTransition(session=session, moved=False)

    reason = self._entry_reason(step, session)
    if reason:
      logger.info(
          "Session %s cannot enter %s: %s", session.id, step.value, reason
      )
      return StepTransition(session=session, moved=False, reason=reason)

    moved = await self._commit(
        session.model_copy(update={"current_step": step})
    )
    return StepTransition(session=moved, moved=True)

  async def back(self) -> StepTransition:
    session = await self._current()
    return await self.go_to(self.gate.previous_step(session))

  async def set_authentication(
      self,
      is_guest: bool,
      method: AuthenticationMethod,
      customer_data: Optional[CustomerData] = None,
      customer_id: Optional[str] = None,
  ) -> CheckoutSession:
    """Resolves the identity slice."""
    session = await self._current()
    update = {
        "is_authenticated": not is_guest,
        "is_guest": is_guest,
        "authentication_method": AuthenticationMethod(method),
        "customer_id": None if is_guest else customer_id,
        "customer_data": customer_data or CustomerData(),
    }
    logger.info(
        "Session %s identity resolved as %s", session.id,
        AuthenticationMethod(method).value
    )
    return await self._commit(session.model_copy(update=update))

  async def set_guest(self) -> CheckoutSession:
    return await self.set_authentication(
        is_guest=True,
        method=AuthenticationMethod.GUEST,
        customer_data=CustomerData(name="", phone="", email=""),
    )

  async def set_customer_data(self, data: CustomerData) -> CheckoutSession:
    session = await self._current()
    if not session.is_authenticated:
      self._require(CheckoutStep.CUSTOMER_DATA, session)
    data = validate_customer_data(data)
    return await self._commit(
        session.model_copy(update={"customer_data": data})
    )

  async def set_address(self, address: DeliveryAddress) -> CheckoutSession:
    session = await self._current()
    self._require(CheckoutStep.ADDRESS, session)
    if not session.requires_delivery:
      raise StepBlockedError(
          CheckoutStep.ADDRESS.value, "this order is not delivered"
      )
    return await self._commit(
        session.model_copy(update={"selected_address": address})
    )

  async def set_payment(self, payment: PaymentSelection) -> CheckoutSession:
    session = await self._current()
    self._require(CheckoutStep.PAYMENT, session)
    return await self._commit(session.model_copy(update={"payment": payment}))

  async def set_order_notes(self, notes: str) -> CheckoutSession:
    session = await self._current()
    notes = (notes or "").strip()
    if len(notes) > MAX_NOTES_LENGTH:
      raise ValidationError(
          {"notes": f"Notes must have at most {MAX_NOTES_LENGTH} characters"}
      )
    return await self._commit(session.model_copy(update={"order_notes": notes}))

  async def reset(self) -> CheckoutSession:
    """Starts over at authentication, keeping only the store context."""
    session = await self._current()
    await self.store.clear(session.store_id)
    self._session = await self.store.create(
        session.store_id,
        requires_delivery=session.requires_delivery,
        table_id=session.table_id,
    )
    return self._session

  async def cancel(self) -> None:
    """Destroys the session on explicit cancellation."""
    session = await self._current()
    logger.info("Cancelling checkout session %s", session.id)
    await self._destroy(session)

  async def complete(self) -> None:
    """Destroys the session after its order was submitted."""
    if self._session is not None:
      await self._destroy(self._session)

  def _entry_reason(
      self, step: CheckoutStep, session: CheckoutSession
  ) -> Optional[str]:
    reason = self.gate.blocking_reason(step, session)
    if reason:
      return reason
    for predecessor in STEP_ORDER[:STEP_ORDER.index(step)]:
      if predecessor not in session.completed_steps:
        return f"step '{predecessor.value}' has not been completed"
    return None

  def _require(self, step: CheckoutStep, session: CheckoutSession) -> None:
    reason = self.gate.blocking_reason(step, session)
    if reason:
      raise StepBlockedError(step.value, reason)

  async def _current(self) -> CheckoutSession:
    if self._session is None:
      raise SessionNotFoundError()
    if not self.store.is_valid(self._session):
      logger.info("Checkout session %s expired", self._session.id)
      await self._destroy(self._session)
      raise SessionNotFoundError("Checkout session expired")
    return self._session

  async def _destroy(self, session: CheckoutSession) -> None:
    await self.store.clear(session.store_id)
    self._session = None

  async def _commit(self, session: CheckoutSession) -> CheckoutSession:
    """Re-evaluates the gate, touches and persists the session."""
    reached = set(session.completed_steps) | set(
        self.gate.completed_prefix(session)
    )
    completed = [step for step in STEP_ORDER if step in reached]
    session = session.model_copy(update={"completed_steps": completed})

    # Never park on a step whose preconditions no longer hold.
    current = CheckoutStep(session.current_step)
    while (
        current != CheckoutStep.AUTHENTICATION
        and self._entry_reason(current, session) is not None
    ):
      current = self.gate.previous_step(
          session.model_copy(update={"current_step": current})
      )
    if current != session.current_step:
      logger.warning(
          "Session %s moved back from %s to %s",
          session.id,
          session.current_step.value,
          current.value,
      )
      session = session.model_copy(update={"current_step": current})

    self._session = await self.store.touch(session)
    return self._session
