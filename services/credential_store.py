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

"""Storage of auth credentials issued to a device by the magic-link flow."""

import datetime
import logging
from typing import Callable, Optional

import config
import db
from models import AuthCredential
from models import IssuedUser
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


class CredentialStore:
  """Persists the JWT and user profile of a device for each store."""

  def __init__(
      self,
      session_factory: Optional[sessionmaker],
      device_id: str,
      clock: Optional[Callable[[], datetime.datetime]] = None,
      ttl: Optional[datetime.timedelta] = None,
  ):
    self.session_factory = session_factory
    self.device_id = device_id
    self.clock = clock or _utcnow
    self.ttl = ttl or config.get_credential_ttl()

  async def save(
      self,
      store_id: str,
      jwt: str,
      user: IssuedUser,
      handshake_id: Optional[str] = None,
  ) -> AuthCredential:
    """Stores a credential, replacing any previous one for the store.

    Args:
      store_id: The store the credential is valid for.
      jwt: The token issued by the authentication backend.
      user: The profile issued along with the token.
      handshake_id: The handshake that obtained the credential, if any.

    Returns:
      The stored credential.

    Raises:
      SQLAlchemyError: If the credential could not be written.
    """
    now = self.clock()
    credential = AuthCredential(
        jwt=jwt,
        user=user,
        issued_at=now,
        expires_at=now + self.ttl,
        handshake_id=handshake_id,
    )
    if self.session_factory is None:
      return credential
    async with self.session_factory() as db_session:
      await db.save_credential(
          db_session,
          self.device_id,
          store_id,
          credential.expires_at.isoformat(),
          credential.model_dump(mode="json"),
          handshake_id=handshake_id,
      )
      await db_session.commit()
    logger.info(
        "Stored credential for device %s at store %s", self.device_id, store_id
    )
    return credential

  async def get(self, store_id: str) -> Optional[AuthCredential]:
    """Returns the unexpired credential of the store, or None."""
    if self.session_factory is None:
      return None
    try:
      async with self.session_factory() as db_session:
        record = await db.get_credential(db_session, self.device_id, store_id)
        data = record.data if record else None
    except SQLAlchemyError as e:
      logger.warning("Failed to read credential for store %s: %s", store_id, e)
      return None
    if data is None:
      return None

    try:
      credential = AuthCredential.model_validate(data)
    except PydanticValidationError as e:
      logger.error("Discarding unreadable credential: %s", e)
      await self.clear(store_id)
      return None

    expires_at = credential.expires_at
    if expires_at.tzinfo is None:
      expires_at = expires_at.replace(tzinfo=datetime.timezone.utc)
    if self.clock() > expires_at:
      logger.info("Credential for store %s expired", store_id)
      await self.clear(store_id)
      return None
    return credential

  async def clear(
      self, store_id: str, handshake_id: Optional[str] = None
  ) -> bool:
    """Deletes the credential of the store.

    When `handshake_id` is given only a credential issued by that handshake is
    removed, so an older login survives a failed handshake.
    """
    if self.session_factory is None:
      return False
    try:
      async with self.session_factory() as db_session:
        deleted = await db.delete_credential(
            db_session, self.device_id, store_id, handshake_id=handshake_id
        )
        await db_session.commit()
    except SQLAlchemyError as e:
      logger.warning(
          "Failed to delete credential for store %s: %s", store_id, e
      )
      return False
    return bool(deleted)
