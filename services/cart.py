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

"""Read access to the cart of a device, as filled in by the menu."""

import logging
from typing import Optional

import db
from models import Cart
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)


class CartProvider:
  """Exposes the cart stored for a device and store."""

  def __init__(self, session_factory: Optional[sessionmaker], device_id: str):
    self.session_factory = session_factory
    self.device_id = device_id

  async def get_cart(self, store_id: str) -> Cart:
    """Returns the stored cart, or an empty one."""
    if self.session_factory is None:
      return Cart(store_id=store_id)
    async with self.session_factory() as db_session:
      data = await db.get_cart(db_session, self.device_id, store_id)
    if data is None:
      return Cart(store_id=store_id)
    try:
      return Cart.model_validate({**data, "store_id": store_id})
    except PydanticValidationError as e:
      logger.error("Unreadable cart for store %s: %s", store_id, e)
      return Cart(store_id=store_id)

  async def save_cart(self, cart: Cart) -> None:
    if self.session_factory is None:
      return
    async with self.session_factory() as db_session:
      await db.save_cart(
          db_session,
          self.device_id,
          cart.store_id,
          cart.model_dump(mode="json"),
      )
      await db_session.commit()

  async def clear(self, store_id: str) -> None:
    if self.session_factory is None:
      return
    async with self.session_factory() as db_session:
      await db.delete_cart(db_session, self.device_id, store_id)
      await db_session.commit()
