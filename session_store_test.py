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

"""Tests for the checkout session store."""

import datetime
from decimal import Decimal
import os

from absl.testing import absltest
import checkout_testing
import db
from enums import CheckoutStep
from enums import PaymentMethod
from models import CustomerData
from models import DeliveryAddress
from models import PaymentSelection
from services.session_store import SessionStore
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

STORE_ID = "store-1"
DEVICE_ID = "device-1"


class SessionStoreTest(checkout_testing.DatabaseTestCase):

  def _store(self, **kwargs) -> SessionStore:
    return SessionStore(
        self.session_factory, DEVICE_ID, clock=self.clock, **kwargs
    )

  def _populated(self, store: SessionStore):
    session = self.run_async(store.create(STORE_ID))
    return session.model_copy(
        update={
            "current_step": CheckoutStep.PAYMENT,
            "completed_steps": [
                CheckoutStep.AUTHENTICATION,
                CheckoutStep.CUSTOMER_DATA,
                CheckoutStep.ADDRESS,
            ],
            "is_guest": True,
            "customer_data": CustomerData(
                name="Ana", phone="11987654321", email=""
            ),
            "selected_address": DeliveryAddress(
                street="Rua A",
                number="10",
                neighborhood="Centro",
                city="Sao Paulo",
                zip_code="01234567",
            ),
            "payment": PaymentSelection(
                method=PaymentMethod.CASH, change_amount=Decimal("50.00")
            ),
        }
    )

  def test_create_positions_session_at_authentication(self):
    store = self._store()
    session = self.run_async(store.create(STORE_ID, table_id="T4"))

    self.assertTrue(session.id.startswith("checkout_"))
    self.assertEqual(session.current_step, CheckoutStep.AUTHENTICATION)
    self.assertEqual(session.completed_steps, [])
    self.assertFalse(session.is_authenticated)
    self.assertFalse(session.is_guest)
    self.assertEqual(session.table_id, "T4")
    self.assertEqual(
        session.expires_at, self.clock() + datetime.timedelta(minutes=30)
    )

  def test_restore_before_expiry_reproduces_session(self):
    store = self._store()
    session = self._populated(store)
    self.run_async(store.save(session))

    self.clock.advance(minutes=29)
    restored = self.run_async(self._store().restore(STORE_ID))

    self.assertEqual(restored, session)
    self.assertEqual(restored.payment.change_amount, Decimal("50.00"))

  def test_restore_after_expiry_yields_no_session(self):
    store = self._store()
    self.run_async(store.create(STORE_ID))

    self.clock.advance(minutes=30, seconds=1)
    self.assertIsNone(self.run_async(store.restore(STORE_ID)))

    async def load():
      async with self.session_factory() as db_session:
        return await db.get_checkout_session(db_session, DEVICE_ID, STORE_ID)

    self.assertIsNone(self.run_async(load()))

  def test_touch_extends_expiry(self):
    store = self._store()
    session = self.run_async(store.create(STORE_ID))

    self.clock.advance(minutes=20)
    touched = self.run_async(store.touch(session))
    self.clock.advance(minutes=20)

    self.assertEqual(touched.last_activity, session.started_at + (
        datetime.timedelta(minutes=20)
    ))
    self.assertIsNotNone(self.run_async(store.restore(STORE_ID)))

  def test_sessions_are_scoped_by_device_and_store(self):
    self.run_async(self._store().create(STORE_ID))
    other_device = SessionStore(
        self.session_factory, "device-2", clock=self.clock
    )

    self.assertIsNone(self.run_async(other_device.restore(STORE_ID)))
    self.assertIsNone(self.run_async(self._store().restore("store-2")))

  def test_clear_destroys_session(self):
    store = self._store()
    self.run_async(store.create(STORE_ID))
    self.run_async(store.clear(STORE_ID))
    self.assertIsNone(self.run_async(store.restore(STORE_ID)))

  def test_unreadable_record_is_discarded(self):
    async def corrupt():
      async with self.session_factory() as db_session:
        await db.save_checkout_session(
            db_session, DEVICE_ID, STORE_ID, "x", "nowhere", "", {"id": 1}
        )
        await db_session.commit()

    self.run_async(corrupt())
    self.assertIsNone(self.run_async(self._store().restore(STORE_ID)))

  def test_failed_write_falls_back_to_memory(self):
    missing_dir = os.path.join(self.test_dir, "missing", "nested")
    broken_engine = create_async_engine(
        f"sqlite+aiosqlite:///{missing_dir}/checkout.db", poolclass=NullPool
    )
    broken_factory = sessionmaker(
        broken_engine, expire_on_commit=False, class_=AsyncSession
    )
    memory = {}
    store = SessionStore(
        broken_factory, DEVICE_ID, clock=self.clock, memory=memory
    )

    session = self.run_async(store.create(STORE_ID))

    self.assertIsNotNone(store.last_warning)
    self.assertIn((DEVICE_ID, STORE_ID), memory)
    self.assertEqual(self.run_async(store.restore(STORE_ID)), session)
    self.run_async(broken_engine.dispose())

  def test_successful_write_clears_fallback(self):
    memory = {}
    offline = SessionStore(None, DEVICE_ID, clock=self.clock, memory=memory)
    session = self.run_async(offline.create(STORE_ID))
    self.assertIn((DEVICE_ID, STORE_ID), memory)

    online = self._store(memory=memory)
    self.run_async(online.save(session))

    self.assertEqual(memory, {})
    self.assertIsNone(online.last_warning)
    self.assertEqual(self.run_async(online.restore(STORE_ID)), session)

  def test_progress_percentage(self):
    store = self._store()
    session = self.run_async(store.create(STORE_ID))
    self.assertEqual(store.progress_percentage(None), 0.0)
    self.assertEqual(store.progress_percentage(session), 20.0)
    at_payment = session.model_copy(
        update={"current_step": CheckoutStep.PAYMENT}
    )
    self.assertEqual(store.progress_percentage(at_payment), 80.0)


if __name__ == "__main__":
  absltest.main()
