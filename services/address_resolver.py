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

"""Selection or entry of the delivery address."""

import logging
import re
from typing import List, Optional

from enums import CheckoutStep
from exceptions import BackendError
from exceptions import ValidationError
from models import AddressForm
from models import CheckoutSession
from models import DeliveryAddress
from models import PostalCodeLookup
from services.backend_client import BackendClient
from services.orchestrator import CheckoutOrchestrator
from services.postal_code_client import PostalCodeClient

logger = logging.getLogger(__name__)

POSTAL_CODE_LENGTH = 8

_REQUIRED_FIELDS = {
    "street": "Street is required",
    "number": "Number is required",
    "neighborhood": "Neighborhood is required",
    "city": "City is required",
}

_MAX_LENGTHS = {
    "street": 255,
    "number": 20,
    "complement": 100,
    "neighborhood": 100,
    "city": 100,
    "reference": 255,
}


def clean_postal_code(value: Optional[str]) -> str:
  return re.sub(r"\D", "", value or "")


def format_postal_code(value: Optional[str]) -> str:
  """Formats a postal code as `NNNNN-NNN` once it has all 8 digits."""
  digits = clean_postal_code(value)
  if len(digits) != POSTAL_CODE_LENGTH:
    return digits
  return f"{digits[:5]}-{digits[5:]}"


def format_address_for_display(address: Optional[DeliveryAddress]) -> str:
  if address is None:
    return ""
  line = f"{address.street}, {address.number}"
  if address.complement:
    line += f" - {address.complement}"
  line += f", {address.neighborhood}, {address.city}"
  if address.state:
    line += f"/{address.state}"
  if address.zip_code:
    line += f" - CEP {format_postal_code(address.zip_code)}"
  return line


def validate_new_address(form: AddressForm) -> DeliveryAddress:
  """Validates a new address entry.

  Args:
    form: The address as entered by the customer.

  Returns:
    A `DeliveryAddress` snapshot with trimmed values and a normalized postal
    code.

  Raises:
    ValidationError: With one message per offending field.
  """
  values = {
      name: (value.strip() if isinstance(value, str) else value)
      for name, value in form.model_dump().items()
  }
  errors = {}
  for field, message in _REQUIRED_FIELDS.items():
    if not values.get(field):
      errors[field] = message
  for field, limit in _MAX_LENGTHS.items():
    if field not in errors and len(values.get(field) or "") > limit:
      errors[field] = f"Must have at most {limit} characters"

  zip_code = clean_postal_code(values.get("zip_code"))
  if values.get("zip_code") and len(zip_code) != POSTAL_CODE_LENGTH:
    errors["zip_code"] = "Postal code must have 8 digits"
  if errors:
    raise ValidationError(errors)

  return DeliveryAddress(
      street=values["street"],
      number=values["number"],
      complement=values.get("complement") or None,
      neighborhood=values["neighborhood"],
      city=values["city"],
      state=values.get("state") or None,
      zip_code=zip_code or None,
      reference=values.get("reference") or None,
  )


def prefill(
    form: AddressForm, lookup: Optional[PostalCodeLookup]
) -> AddressForm:
  """Fills the fields a postal code lookup knows, keeping what was typed."""
  if lookup is None:
    return form
  return form.model_copy(
      update={
          "zip_code": format_postal_code(lookup.zip_code),
          "street": form.street or lookup.street,
          "neighborhood": form.neighborhood or lookup.neighborhood,
          "city": form.city or lookup.city,
          "state": form.state or lookup.state or None,
      }
  )


class AddressResolver:
  """Produces the selected delivery address of the session."""

  def __init__(
      self,
      orchestrator: CheckoutOrchestrator,
      backend: Optional[BackendClient] = None,
      postal_codes: Optional[PostalCodeClient] = None,
  ):
    self.orchestrator = orchestrator
    self.backend = backend
    self.postal_codes = postal_codes

  async def list_saved_addresses(self) -> List[DeliveryAddress]:
    """Saved addresses of an account customer; empty for guests."""
    session = await self.orchestrator.get_state()
    if not session.customer_id or self.backend is None:
      return []
    try:
      return await self.backend.list_customer_addresses(session.customer_id)
    except BackendError as e:
      logger.warning(
          "Could not load addresses of customer %s: %s", session.customer_id, e
      )
      return []

  def shows_new_address_form(
      self, session: CheckoutSession, saved: List[DeliveryAddress]
  ) -> bool:
    return session.is_guest or not saved

  async def lookup_postal_code(
      self, postal_code: str
  ) -> Optional[PostalCodeLookup]:
    """Best-effort lookup; None when unknown, malformed or unreachable."""
    digits = clean_postal_code(postal_code)
    if len(digits) != POSTAL_CODE_LENGTH or self.postal_codes is None:
      return None
    return await self.postal_codes.lookup(digits)

  async def select_saved(self, address: DeliveryAddress) -> CheckoutSession:
    """Selects one of the customer's saved addresses by its id.

    The stored copy is used; fields posted along with the id are ignored.
    """
    if address.id:
      for saved in await self.list_saved_addresses():
        if saved.id == address.id:
          return await self._apply(saved)
    raise ValidationError({"id": "Select one of your saved addresses"})

  async def confirm_new(self, form: AddressForm) -> CheckoutSession:
    return await self._apply(validate_new_address(form))

  async def _apply(self, address: DeliveryAddress) -> CheckoutSession:
    session = await self.orchestrator.set_address(address)
    if session.current_step != CheckoutStep.ADDRESS:
      # Edited from a later step; stay there.
      return session
    return await self.orchestrator.advance()
