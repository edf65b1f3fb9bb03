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

"""Tests for the checkout orchestrator state machine."""

from absl.testing import absltest
import checkout_testing
from enums import STEP_ORDER
from enums import AuthenticationMethod
from enums import CheckoutStep
from enums import PaymentMethod
from exceptions import SessionNotFoundError
from exceptions import StepBlockedError
from exceptions import ValidationError
from models import CustomerData
from models import DeliveryAddress
from models import PaymentSelection
from services.orchestrator import CheckoutOrchestrator
from services.orchestrator import validate_customer_data
from services.session_store import SessionStore

STORE_ID = "store-1"
DEVICE_ID = "device-1"

ADDRESS = DeliveryAddress(
    street="Rua A",
    number="10",
    neighborhood="Centro",
    city="Sao Paulo",
    zip_code="01234567",
)
GUEST_DATA = CustomerData(name="Ana Souza", phone="(11) 98765-4321")


class ValidateCustomerDataTest(absltest.TestCase):

  def test_normalizes_valid_data(self):
    data = validate_customer_data(
        CustomerData(name="  Ana ", phone="(11) 98765-4321", email="")
    )
    self.assertEqual(data.name, "Ana")
    self.assertEqual(data.phone, "11987654321")

  def test_reports_every_invalid_field(self):
    with self.assertRaises(ValidationError) as ctx:
      validate_customer_data(
          CustomerData(name="A", phone="123", email="not-an-email")
      )
    self.assertEqual(
        set(ctx.exception.field_errors), {"name", "phone", "email"}
    )


class CheckoutOrchestratorTest(checkout_testing.DatabaseTestCase):

  def setUp(self):
    super().setUp()
    self.store = SessionStore(
        self.session_factory, DEVICE_ID, clock=self.clock
    )
    self.orchestrator = CheckoutOrchestrator(self.store)

  def assert_consistent(self, session):
    """No step past a gap; the current step has all predecessors done."""
    current = STEP_ORDER.index(session.current_step)
    for step in STEP_ORDER[:current]:
      self.assertIn(step, session.completed_steps)
    self.assertFalse(session.is_authenticated and session.is_guest)

  async def _guest_at_address(self, requires_delivery=True):
    await self.orchestrator.start(
        STORE_ID, requires_delivery=requires_delivery
    )
    await self.orchestrator.set_guest()
    await self.orchestrator.advance()
    await self.orchestrator.set_customer_data(GUEST_DATA)
    return await self.orchestrator.advance()

  def test_start_creates_then_resumes(self):
    created = self.run_async(self.orchestrator.start(STORE_ID, table_id="T1"))

    resumed = self.run_async(
        CheckoutOrchestrator(self.store).start(STORE_ID)
    )

    self.assertEqual(resumed.id, created.id)
    self.assertEqual(resumed.table_id, "T1")
    self.assertEqual(resumed.current_step, CheckoutStep.AUTHENTICATION)

  def test_resume_without_session_raises(self):
    with self.assertRaises(SessionNotFoundError):
      self.run_async(self.orchestrator.resume(STORE_ID))

  def test_advance_blocked_leaves_session_unchanged(self):
    async def scenario():
      before = await self.orchestrator.start(STORE_ID)
      with self.assertRaises(StepBlockedError) as ctx:
        await self.orchestrator.advance()
      self.assertEqual(ctx.exception.step, "customer_data")
      return before, await self.store.restore(STORE_ID)

    before, stored = self.run_async(scenario())
    self.assertEqual(stored, before)

  def test_repeated_blocked_advance_is_idempotent(self):
    async def scenario():
      await self._guest_at_address()
      reasons = []
      for _ in range(2):
        try:
          await self.orchestrator.advance()
        except StepBlockedError as e:
          reasons.append(e.reason)
      return reasons, await self.orchestrator.get_state()

    reasons, session = self.run_async(scenario())
    self.assertEqual(reasons, ["a delivery address must be selected"] * 2)
    self.assertEqual(session.current_step, CheckoutStep.ADDRESS)

  def test_go_to_blocked_step_does_not_move(self):
    async def scenario():
      await self.orchestrator.start(STORE_ID)
      return await self.orchestrator.go_to(CheckoutStep.PAYMENT)

    transition = self.run_async(scenario())
    self.assertFalse(transition.moved)
    self.assertEqual(transition.reason, "identity has not been resolved")
    self.assertEqual(
        transition.session.current_step, CheckoutStep.AUTHENTICATION
    )

  def test_guest_flow_collects_data_then_address(self):
    async def scenario():
      await self.orchestrator.start(STORE_ID)
      guest = await self.orchestrator.set_guest()
      at_data = await self.orchestrator.advance()
      await self.orchestrator.set_customer_data(GUEST_DATA)
      at_address = await self.orchestrator.advance()
      return guest, at_data, at_address

    guest, at_data, at_address = self.run_async(scenario())
    self.assertTrue(guest.is_guest)
    self.assertEqual(guest.authentication_method, AuthenticationMethod.GUEST)
    self.assertEqual(guest.customer_data, CustomerData(name="", phone=""))
    self.assertEqual(at_data.current_step, CheckoutStep.CUSTOMER_DATA)
    self.assertEqual(at_address.current_step, CheckoutStep.ADDRESS)
    self.assertEqual(at_address.customer_data.phone, "11987654321")
    for session in (guest, at_data, at_address):
      self.assert_consistent(session)

  def test_pickup_order_skips_address(self):
    session = self.run_async(self._guest_at_address(requires_delivery=False))
    self.assertEqual(session.current_step, CheckoutStep.PAYMENT)
    self.assertIn(CheckoutStep.ADDRESS, session.completed_steps)
    self.assert_consistent(session)

  def test_set_address_rejected_for_pickup_order(self):
    async def scenario():
      await self._guest_at_address(requires_delivery=False)
      await self.orchestrator.set_address(ADDRESS)

    with self.assertRaises(StepBlockedError):
      self.run_async(scenario())

  def test_full_flow_reaches_confirmation(self):
    async def scenario():
      await self._guest_at_address()
      await self.orchestrator.set_address(ADDRESS)
      await self.orchestrator.advance()
      await self.orchestrator.set_payment(
          PaymentSelection(method=PaymentMethod.PIX)
      )
      return await self.orchestrator.advance()

    session = self.run_async(scenario())
    self.assertEqual(session.current_step, CheckoutStep.CONFIRMATION)
    self.assertEqual(session.completed_steps, list(STEP_ORDER[:4]))
    self.assert_consistent(session)

  def test_advance_from_confirmation_is_blocked(self):
    async def scenario():
      await self._guest_at_address(requires_delivery=False)
      await self.orchestrator.set_payment(
          PaymentSelection(method=PaymentMethod.CREDIT)
      )
      await self.orchestrator.advance()
      await self.orchestrator.advance()

    with self.assertRaises(StepBlockedError) as ctx:
      self.run_async(scenario())
    self.assertEqual(ctx.exception.step, "confirmation")

  def test_account_identity_bypasses_customer_data(self):
    async def scenario():
      await self.orchestrator.start(STORE_ID)
      await self.orchestrator.set_authentication(
          is_guest=False,
          method=AuthenticationMethod.EXISTING_ACCOUNT,
          customer_data=CustomerData(name="Bia", phone="11999999999"),
          customer_id="42",
      )
      return await self.orchestrator.advance()

    session = self.run_async(scenario())
    self.assertEqual(session.current_step, CheckoutStep.ADDRESS)
    self.assertTrue(session.is_authenticated)
    self.assertFalse(session.is_guest)
    self.assertEqual(session.customer_id, "42")
    self.assert_consistent(session)

  def test_switching_identity_keeps_flags_exclusive(self):
    async def scenario():
      await self.orchestrator.start(STORE_ID)
      await self.orchestrator.set_guest()
      account = await self.orchestrator.set_authentication(
          is_guest=False,
          method=AuthenticationMethod.NEW_ACCOUNT,
          customer_data=CustomerData(name="Bia", phone="11999999999"),
      )
      guest = await self.orchestrator.set_guest()
      return account, guest

    account, guest = self.run_async(scenario())
    self.assertTrue(account.is_authenticated)
    self.assertFalse(account.is_guest)
    self.assertTrue(guest.is_guest)
    self.assertFalse(guest.is_authenticated)
    self.assertIsNone(guest.customer_id)

  def test_back_keeps_completed_steps(self):
    async def scenario():
      await self._guest_at_address()
      await self.orchestrator.set_address(ADDRESS)
      at_payment = await self.orchestrator.advance()
      transition = await self.orchestrator.back()
      return at_payment, transition

    at_payment, transition = self.run_async(scenario())
    self.assertTrue(transition.moved)
    self.assertEqual(transition.session.current_step, CheckoutStep.ADDRESS)
    self.assertTrue(
        set(at_payment.completed_steps)
        <= set(transition.session.completed_steps)
    )

  def test_lost_precondition_moves_current_step_back(self):
    async def scenario():
      await self._guest_at_address()
      await self.orchestrator.set_address(ADDRESS)
      await self.orchestrator.advance()
      # Choosing guest again discards the entered contact data.
      return await self.orchestrator.set_guest()

    session = self.run_async(scenario())
    self.assertEqual(session.current_step, CheckoutStep.CUSTOMER_DATA)
    self.assert_consistent(session)

  def test_set_customer_data_requires_step(self):
    async def scenario():
      await self.orchestrator.start(STORE_ID)
      await self.orchestrator.set_customer_data(GUEST_DATA)

    with self.assertRaises(StepBlockedError):
      self.run_async(scenario())

  def test_set_payment_requires_address(self):
    async def scenario():
      await self._guest_at_address()
      await self.orchestrator.set_payment(
          PaymentSelection(method=PaymentMethod.PIX)
      )

    with self.assertRaises(StepBlockedError) as ctx:
      self.run_async(scenario())
    self.assertEqual(ctx.exception.step, "payment")

  def test_order_notes_are_bounded(self):
    async def scenario():
      await self.orchestrator.start(STORE_ID)
      saved = await self.orchestrator.set_order_notes("  sem cebola  ")
      with self.assertRaises(ValidationError):
        await self.orchestrator.set_order_notes("x" * 501)
      return saved

    self.assertEqual(self.run_async(scenario()).order_notes, "sem cebola")

  def test_reset_starts_over_with_store_context(self):
    async def scenario():
      await self.orchestrator.start(
          STORE_ID, requires_delivery=False, table_id="T9"
      )
      old = await self.orchestrator.set_guest()
      return old, await self.orchestrator.reset()

    old, fresh = self.run_async(scenario())
    self.assertNotEqual(fresh.id, old.id)
    self.assertEqual(fresh.current_step, CheckoutStep.AUTHENTICATION)
    self.assertEqual(fresh.completed_steps, [])
    self.assertFalse(fresh.is_guest)
    self.assertFalse(fresh.requires_delivery)
    self.assertEqual(fresh.table_id, "T9")

  def test_cancel_destroys_session(self):
    async def scenario():
      await self.orchestrator.start(STORE_ID)
      await self.orchestrator.cancel()
      return await self.store.restore(STORE_ID)

    self.assertIsNone(self.run_async(scenario()))
    with self.assertRaises(SessionNotFoundError):
      self.run_async(self.orchestrator.get_state())

  def test_expired_session_is_not_usable(self):
    self.run_async(self.orchestrator.start(STORE_ID))
    self.clock.advance(minutes=31)

    with self.assertRaises(SessionNotFoundError):
      self.run_async(self.orchestrator.get_state())
    self.assertIsNone(self.run_async(self.store.restore(STORE_ID)))

  def test_activity_extends_expiry(self):
    async def scenario():
      await self.orchestrator.start(STORE_ID)
      self.clock.advance(minutes=25)
      await self.orchestrator.set_guest()
      self.clock.advance(minutes=25)
      return await self.orchestrator.get_state()

    self.assertTrue(self.run_async(scenario()).is_guest)


if __name__ == "__main__":
  absltest.main()
