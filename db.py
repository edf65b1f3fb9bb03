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

"""Database management and persistence layer for the checkout service.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the service. It utilizes SQLAlchemy
with SQLite (via aiosqlite) as the durable store that replaces browser storage:
every record is scoped by the anonymous device identifier and the store id.

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
factory setup.
- WAL Mode: Automatically enables SQLite Write-Ahead Logging so that request
  handlers can read while another request commits.
- Declarative Models: Defines tables for checkout sessions, issued auth
  credentials, the handshake audit log and carts.
- Data Access Helpers: A suite of asynchronous functions for CRUD operations on
  the database models.
"""

import datetime
import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import delete
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

CheckoutBase = declarative_base()


class DatabaseManager:
  """Manages the database engine and sessions without using global variables."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(self, db_path: str) -> None:
    """Initializes the database engine and creates tables."""
    db_url = f"sqlite+aiosqlite:///{db_path}"
    self.engine = create_async_engine(db_url, echo=False)

    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.engine.begin() as conn:
      await conn.run_sync(CheckoutBase.metadata.create_all)

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class CheckoutSessionRecord(CheckoutBase):
  __tablename__ = "checkout_sessions"

  device_id = Column(String, primary_key=True)
  store_id = Column(String, primary_key=True)
  session_id = Column(String, index=True)
  current_step = Column(String)
  expires_at = Column(String)  # ISO-8601, UTC
  # SQLAlchemy JSON type handles serialization automatically
  data = Column(JSON)


class AuthCredentialRecord(CheckoutBase):
  __tablename__ = "auth_credentials"

  device_id = Column(String, primary_key=True)
  store_id = Column(String, primary_key=True)
  handshake_id = Column(String, nullable=True)
  expires_at = Column(String)
  data = Column(JSON)


class HandshakeAuditLog(CheckoutBase):
  __tablename__ = "handshake_audit_log"

  id = Column(Integer, primary_key=True, autoincrement=True)
  timestamp = Column(String)
  handshake_id = Column(String, index=True)
  device_id = Column(String)
  from_state = Column(String)
  to_state = Column(String)
  has_token = Column(Boolean, default=False)
  has_user = Column(Boolean, default=False)
  error_code = Column(String, nullable=True)


class CartRecord(CheckoutBase):
  __tablename__ = "carts"

  device_id = Column(String, primary_key=True)
  store_id = Column(String, primary_key=True)
  data = Column(JSON)


# --- Data Access Helpers ---


async def get_checkout_session(
    session: AsyncSession, device_id: str, store_id: str
) -> Optional[Dict[str, Any]]:
  """Retrieves the stored checkout session of a device for a store."""
  result = await session.get(CheckoutSessionRecord, (device_id, store_id))
  if result:
    return result.data
  return None


async def save_checkout_session(
    session: AsyncSession,
    device_id: str,
    store_id: str,
    session_id: str,
    current_step: str,
    expires_at: str,
    data: Dict[str, Any],
) -> None:
  """Saves or updates a checkout session."""
  existing = await session.get(CheckoutSessionRecord, (device_id, store_id))
  if existing:
    existing.session_id = session_id
    existing.current_step = current_step
    existing.expires_at = expires_at
    existing.data = data
  else:
    session.add(
        CheckoutSessionRecord(
            device_id=device_id,
            store_id=store_id,
            session_id=session_id,
            current_step=current_step,
            expires_at=expires_at,
            data=data,
        )
    )


async def delete_checkout_session(
    session: AsyncSession, device_id: str, store_id: str
) -> None:
  """Deletes the checkout session of a device for a store, if any."""
  await session.execute(
      delete(CheckoutSessionRecord).where(
          CheckoutSessionRecord.device_id == device_id,
          CheckoutSessionRecord.store_id == store_id,
      )
  )


async def list_checkout_sessions(
    session: AsyncSession,
) -> List[CheckoutSessionRecord]:
  """Retrieves all stored checkout sessions."""
  result = await session.execute(
      select(CheckoutSessionRecord).order_by(CheckoutSessionRecord.expires_at)
  )
  return list(result.scalars().all())


async def get_credential(
    session: AsyncSession, device_id: str, store_id: str
) -> Optional[AuthCredentialRecord]:
  """Retrieves the issued auth credential of a device for a store."""
  return await session.get(AuthCredentialRecord, (device_id, store_id))


async def save_credential(
    session: AsyncSession,
    device_id: str,
    store_id: str,
    expires_at: str,
    data: Dict[str, Any],
    handshake_id: Optional[str] = None,
) -> None:
  """Saves or replaces the auth credential of a device for a store."""
  existing = await session.get(AuthCredentialRecord, (device_id, store_id))
  if existing:
    existing.handshake_id = handshake_id
    existing.expires_at = expires_at
    existing.data = data
  else:
    session.add(
        AuthCredentialRecord(
            device_id=device_id,
            store_id=store_id,
            handshake_id=handshake_id,
            expires_at=expires_at,
            data=data,
        )
    )


async def delete_credential(
    session: AsyncSession,
    device_id: str,
    store_id: str,
    handshake_id: Optional[str] = None,
) -> int:
  """Deletes a device credential.

  Args:
    session: The database session to use.
    device_id: The device the credential was issued to.
    store_id: The store the credential belongs to.
    handshake_id: When given, only a credential issued by that handshake is
      deleted.

  Returns:
    The number of deleted rows.
  """
  stmt = delete(AuthCredentialRecord).where(
      AuthCredentialRecord.device_id == device_id,
      AuthCredentialRecord.store_id == store_id,
  )
  if handshake_id is not None:
    stmt = stmt.where(AuthCredentialRecord.handshake_id == handshake_id)
  result = await session.execute(stmt)
  return result.rowcount


async def log_handshake_transition(
    session: AsyncSession,
    handshake_id: str,
    device_id: str,
    from_state: str,
    to_state: str,
    has_token: bool,
    has_user: bool,
    error_code: Optional[str] = None,
) -> None:
  """Appends a handshake state transition to the audit log."""
  session.add(
      HandshakeAuditLog(
          timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
          handshake_id=handshake_id,
          device_id=device_id,
          from_state=from_state,
          to_state=to_state,
          has_token=has_token,
          has_user=has_user,
          error_code=error_code,
      )
  )


async def get_handshake_log(
    session: AsyncSession, handshake_id: Optional[str] = None
) -> List[HandshakeAuditLog]:
  """Retrieves audit log entries, optionally for a single handshake."""
  stmt = select(HandshakeAuditLog).order_by(HandshakeAuditLog.id)
  if handshake_id is not None:
    stmt = stmt.where(HandshakeAuditLog.handshake_id == handshake_id)
  result = await session.execute(stmt)
  return list(result.scalars().all())


async def get_cart(
    session: AsyncSession, device_id: str, store_id: str
) -> Optional[Dict[str, Any]]:
  """Retrieves the cart of a device for a store."""
  result = await session.get(CartRecord, (device_id, store_id))
  if result:
    return result.data
  return None


async def save_cart(
    session: AsyncSession, device_id: str, store_id: str, data: Dict[str, Any]
) -> None:
  """Saves or replaces the cart of a device for a store."""
  existing = await session.get(CartRecord, (device_id, store_id))
  if existing:
    existing.data = data
  else:
    session.add(CartRecord(device_id=device_id, store_id=store_id, data=data))


async def delete_cart(
    session: AsyncSession, device_id: str, store_id: str
) -> None:
  """Deletes the cart of a device for a store."""
  await session.execute(
      delete(CartRecord).where(
          CartRecord.device_id == device_id, CartRecord.store_id == store_id
      )
  )
