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

"""Durable storage of checkout sessions.

The `SessionStore` owns the lifecycle of a `CheckoutSession`: creation,
restoration, persistence, expiry extension and destruction. Records are scoped
to a device and a store, so reopening the checkout within the TTL resumes the
exact step and data the customer left.

Persistence failures never break checkout. A failed write is logged as a
warning and the session is kept in an in-memory fallback map that takes
precedence over the database until a later write succeeds.
"""

import datetime
import logging
from typing import Callable, Dict, Optional, Tuple
import uuid

import config
import db
from enums import STEP_ORDER
from enums import CheckoutStep
from models import CheckoutSession
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]
MemoryMap = Dict[Tuple[str, str], CheckoutSession]


def utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


def _as_utc(value: datetime.datetime) -> datetime.datetime:
  if value.tzinfo is None:
    return value.replace(tzinfo=datetime.timezone.utc)
  return value


class SessionStore:
  """Persists and restores the checkout session of one device."""

  def __init__(
      self,
      session_factory: Optional[sessionmaker],
      device_id: str,
      ttl: Optional[datetime.timedelta] = None,
      clock: Optional[Clock] = None,
      memory: Optional[MemoryMap] = None,
  ):
    self.session_factory = session_factory
    self.device_id = device_id
    self.ttl = ttl or config.get_session_ttl()
    self.clock = clock or utcnow
    self.memory = memory if memory is not None else {}
    self.last_warning: Optional[str] = None

  def _key(self, store_id: str) -> Tuple[str, str]:
    return (self.device_id, store_id)

  async def create(
      self,
      store_id: str,
      requires_delivery: bool = True,
      customer_id: Optional[str] = None,
      table_id: Optional[str] = None,
  ) -> CheckoutSession:
    """Creates and persists a fresh session positioned at authentication."""
    now = self.clock()
    session = CheckoutSession(
        id=f"checkout_{uuid.uuid4().hex}",
        store_id=store_id,
        device_id=self.device_id,
        customer_id=customer_id,
        requires_delivery=requires_delivery,
        table_id=table_id,
        started_at=now,
        last_activity=now,
        expires_at=now + self.ttl,
    )
    logger.info(
        "Creating checkout session %s for store %s", session.id, store_id
    )
    await self.save(session)
    return session

  async def restore(self, store_id: str) -> Optional[CheckoutSession]:
    """Returns the live session for the store, discarding an expired one."""
    session = self.memory.get(self._key(store_id))
    if session is None:
      data = await self._load(store_id)
      if data is None:
        return None
      try:
        session = CheckoutSession.model_validate(data)
      except PydanticValidationError as e:
        logger.error(
            "Discarding unreadable checkout session for store %s: %s",
            store_id,
            e,
        )
        await self.clear(store_id)
        return None

    if not self.is_valid(session):
      logger.info("Checkout session %s expired; discarding", session.id)
      await self.clear(store_id)
      return None
    return session

  async def save(self, session: CheckoutSession) -> None:
    """Persists the session. Never raises for a well-formed session."""
    key = self._key(session.store_id)
    if self.session_factory is None:
      self._degrade(key, session, "no durable storage configured")
      return
    try:
      async with self.session_factory() as db_session:
        await db.save_checkout_session(
            db_session,
            self.device_id,
            session.store_id,
            session.id,
            session.current_step.value,
            _as_utc(session.expires_at).isoformat(),
            session.model_dump(mode="json"),
        )
        await db_session.commit()
    except SQLAlchemyError as e:
      self._degrade(key, session, str(e))
      return
    self.memory.pop(key, None)
    self.last_warning = None

  async def touch(self, session: CheckoutSession) -> CheckoutSession:
    """Records activity and extends the expiry by one TTL."""
    now = self.clock()
    touched = session.model_copy(
        update={"last_activity": now, "expires_at": now + self.ttl}
    )
    await self.save(touched)
    return touched

  async def clear(self, store_id: str) -> None:
    """Destroys the session of the store."""
    self.memory.pop(self._key(store_id), None)
    if self.session_factory is None:
      return
    try:
      async with self.session_factory() as db_session:
        await db.delete_checkout_session(db_session, self.device_id, store_id)
        await db_session.commit()
    except SQLAlchemyError as e:
      logger.warning(
          "Failed to delete checkout session for store %s: %s", store_id, e
      )

  def is_valid(self, session: CheckoutSession) -> bool:
    return self.clock() <= _as_utc(session.expires_at)

  def progress_percentage(self, session: Optional[CheckoutSession]) -> float:
    if session is None:
      return 0.0
    index = STEP_ORDER.index(CheckoutStep(session.current_step))
    return (index + 1) / len(STEP_ORDER) * 100

  async def _load(self, store_id: str):
    if self.session_factory is None:
      return None
    try:
      async with self.session_factory() as db_session:
        return await db.get_checkout_session(
            db_session, self.device_id, store_id
        )
    except SQLAlchemyError as e:
      logger.warning(
          "Failed to read checkout session for store %s: %s", store_id, e
      )
      return None

  def _degrade(self, key, session: CheckoutSession, reason: str) -> None:
    self.memory[key] = session
    self.last_warning = (
        "Checkout progress could not be saved on this device; it will be"
        " lost if the page is closed."
    )
    logger.warning(
        "Failed to persist checkout session %s, keeping it in memory: %s",
        session.id,
        reason,
    )
