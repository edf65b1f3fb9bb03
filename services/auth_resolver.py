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

"""Resolution of the customer identity at the authentication step.

Decision table applied when the customer reaches `authentication`:

| Condition                                  | Outcome                        |
|--------------------------------------------|--------------------------------|
| A valid account credential is stored       | authenticate and skip ahead    |
| A guest session is already on record       | reuse it and skip ahead        |
| "Identify by phone"                        | send a magic link (handshake)  |
| "Login / create account"                   | delegated login, then as above |
| "Continue as guest"                        | guest with empty contact data  |
"""

import logging
import re
from typing import Optional

from enums import AuthenticationMethod
from enums import CheckoutStep
from exceptions import StepBlockedError
from exceptions import ValidationError
from models import AuthCredential
from models import CheckoutSession
from models import CustomerData
from models import IssuedUser
from models import MagicLinkRequestResult
from services.backend_client import BackendClient
from services.credential_store import CredentialStore
from services.orchestrator import CheckoutOrchestrator

logger = logging.getLogger(__name__)

COUNTRY_CODE = "55"

# Brazilian area codes (DDD) in service.
VALID_AREA_CODES = frozenset({
    "11", "12", "13", "14", "15", "16", "17", "18", "19",
    "21", "22", "24", "27", "28",
    "31", "32", "33", "34", "35", "37", "38",
    "41", "42", "43", "44", "45", "46", "47", "48", "49",
    "51", "53", "54", "55",
    "61", "62", "63", "64", "65", "66", "67", "68", "69",
    "71", "73", "74", "75", "77", "79",
    "81", "82", "83", "84", "85", "86", "87", "88", "89",
    "91", "92", "93", "94", "95", "96", "97", "98", "99",
})


def normalize_phone(phone: str) -> str:
  """Validates a Brazilian phone number and returns it as `55` + DDD + number.

  Args:
    phone: The number as typed, with or without formatting or country code.

  Returns:
    The normalized number, e.g. "5511987654321".

  Raises:
    ValidationError: If the number is not a valid Brazilian phone.
  """
  digits = re.sub(r"\D", "", phone or "")
  if len(digits) in (12, 13) and digits.startswith(COUNTRY_CODE):
    digits = digits[len(COUNTRY_CODE):]
  if len(digits) not in (10, 11):
    raise ValidationError({"phone": "Phone must have 10 or 11 digits"})
  if digits[:2] not in VALID_AREA_CODES:
    raise ValidationError({"phone": "Invalid area code"})
  if len(digits) == 11 and digits[2] != "9":
    raise ValidationError(
        {"phone": "Mobile numbers must start with 9 after the area code"}
    )
  return COUNTRY_CODE + digits


class AuthenticationResolver:
  """Resolves the identity slice of the checkout session."""

  def __init__(
      self,
      orchestrator: CheckoutOrchestrator,
      credentials: CredentialStore,
      backend: Optional[BackendClient] = None,
  ):
    self.orchestrator = orchestrator
    self.credentials = credentials
    self.backend = backend

  async def resolve_on_entry(self) -> CheckoutSession:
    """Applies the decision table to the started session."""
    session = await self.orchestrator.get_state()

    credential = await self.credentials.get(session.store_id)
    if credential is not None and not session.is_authenticated:
      session = await self._authenticate(credential)
      return await self._skip_ahead(session)

    if session.identity_resolved:
      # Guest or account already on record for this store.
      return await self._skip_ahead(session)
    return session

  async def continue_as_guest(self) -> CheckoutSession:
    session = await self.orchestrator.set_guest()
    logger.info("Session %s continues as guest", session.id)
    return await self._skip_ahead(session)

  async def complete_account_login(
      self, jwt: str, user: IssuedUser, handshake_id: Optional[str] = None
  ) -> CheckoutSession:
    """Stores an issued credential and authenticates the session with it.

    Used by the delegated login and by a successful magic-link handshake,
    which passes its id so the credential can be revoked with it.
    """
    session = await self.orchestrator.get_state()
    credential = await self.credentials.save(
        session.store_id, jwt, user, handshake_id=handshake_id
    )
    session = await self._authenticate(credential)
    return await self._skip_ahead(session)

  async def request_magic_link(self, phone: str) -> MagicLinkRequestResult:
    """Validates the phone and asks the backend to send an access link."""
    normalized = normalize_phone(phone)
    session = await self.orchestrator.get_state()
    result = await self.backend.request_magic_link(normalized, session.store_id)
    if result.success:
      logger.info("Magic link sent for session %s", session.id)
    else:
      logger.warning(
          "Magic link request for session %s failed: %s",
          session.id,
          result.message,
      )
    return result

  async def _authenticate(self, credential: AuthCredential) -> CheckoutSession:
    session = await self.orchestrator.get_state()
    user = credential.user
    method = (
        AuthenticationMethod.EXISTING_ACCOUNT
        if session.customer_id
        else AuthenticationMethod.NEW_ACCOUNT
    )
    return await self.orchestrator.set_authentication(
        is_guest=False,
        method=method,
        customer_data=CustomerData(
            name=user.name, phone=user.phone, email=user.email or ""
        ),
        customer_id=user.id or session.customer_id,
    )

  async def _skip_ahead(self, session: CheckoutSession) -> CheckoutSession:
    if session.current_step != CheckoutStep.AUTHENTICATION:
      return session
    try:
      return await self.orchestrator.advance()
    except StepBlockedError as e:
      logger.info("Session %s stays at authentication: %s", session.id, e)
      return session
