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

"""Models for the menu checkout service.

The checkout session is the aggregate root persisted by the session store. The
remaining models describe the slices it carries, the cart read from the cart
provider, and typed results for every external endpoint so that untyped JSON
never travels past the client boundary.
"""

import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from enums import AuthenticationMethod
from enums import CheckoutStep
from enums import HandshakeAction
from enums import HandshakeState
from enums import PaymentMethod
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class CustomerData(BaseModel):
  """Contact data of the person placing the order."""

  name: str = ""
  phone: str = ""
  email: Optional[str] = ""


class DeliveryAddress(BaseModel):
  """Snapshot of a delivery address.

  `id` is set only when the snapshot references a persisted customer address.
  """

  id: Optional[str] = None
  street: str
  number: str
  complement: Optional[str] = None
  neighborhood: str
  city: str
  state: Optional[str] = None
  zip_code: Optional[str] = None
  reference: Optional[str] = None


class AddressForm(BaseModel):
  """Raw new-address entry, validated by the address resolver."""

  street: str = ""
  number: str = ""
  complement: Optional[str] = None
  neighborhood: str = ""
  city: str = ""
  state: Optional[str] = None
  zip_code: Optional[str] = None
  reference: Optional[str] = None


class PaymentSelection(BaseModel):
  method: PaymentMethod
  change_amount: Optional[Decimal] = None


class CheckoutSession(BaseModel):
  """Persisted, per-device checkout state."""

  id: str
  store_id: str
  device_id: str
  current_step: CheckoutStep = CheckoutStep.AUTHENTICATION
  completed_steps: List[CheckoutStep] = Field(default_factory=list)
  is_authenticated: bool = False
  is_guest: bool = False
  authentication_method: Optional[AuthenticationMethod] = None
  customer_id: Optional[str] = None
  customer_data: Optional[CustomerData] = None
  selected_address: Optional[DeliveryAddress] = None
  payment: Optional[PaymentSelection] = None
  order_notes: str = ""
  requires_delivery: bool = True
  table_id: Optional[str] = None
  started_at: datetime.datetime
  last_activity: datetime.datetime
  expires_at: datetime.datetime

  @property
  def identity_resolved(self) -> bool:
    return self.is_authenticated != self.is_guest


class StepTransition(BaseModel):
  """Outcome of a non-raising step change request."""

  session: CheckoutSession
  moved: bool
  reason: Optional[str] = None


class CartAdditional(BaseModel):
  id: str
  name: str = ""
  quantity: int = 1
  price: Decimal = Decimal("0")


class CartItem(BaseModel):
  identify: str
  name: str
  quantity: int
  price: Decimal
  notes: Optional[str] = None
  additionals: List[CartAdditional] = Field(default_factory=list)

  @property
  def subtotal(self) -> Decimal:
    extras = sum(
        (a.price * a.quantity for a in self.additionals), Decimal("0")
    )
    return (self.price + extras) * self.quantity


class Cart(BaseModel):
  """Read-only view of the customer's cart."""

  store_id: str
  items: List[CartItem] = Field(default_factory=list)
  requires_delivery: bool = True
  delivery_fee: Decimal = Decimal("0")

  @property
  def total(self) -> Decimal:
    subtotal = sum((item.subtotal for item in self.items), Decimal("0"))
    if self.requires_delivery:
      subtotal += self.delivery_fee
    return subtotal


class IssuedUser(BaseModel):
  """User profile returned by the authentication backend."""

  model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

  id: Optional[str] = None
  name: str = ""
  phone: str = ""
  email: Optional[str] = ""


class AuthCredential(BaseModel):
  """An issued credential (JWT plus profile) stored for a device and store."""

  jwt: str
  user: IssuedUser
  issued_at: datetime.datetime
  expires_at: datetime.datetime
  handshake_id: Optional[str] = None


class PostalCodeLookup(BaseModel):
  """Normalized result of a successful postal code lookup."""

  zip_code: str
  street: str = ""
  neighborhood: str = ""
  city: str = ""
  state: str = ""


class VerificationOk(BaseModel):
  status: Literal["ok"] = "ok"
  token: str
  user: IssuedUser


class VerificationFailed(BaseModel):
  status: Literal["error"] = "error"
  code: str
  message: str = ""


VerificationResult = Annotated[
    Union[VerificationOk, VerificationFailed], Field(discriminator="status")
]


class MagicLinkRequestResult(BaseModel):
  success: bool
  message: str = ""
  token_id: Optional[str] = None
  expires_at: Optional[datetime.datetime] = None


class CallbackParams(BaseModel):
  """Parameters of a magic-link callback request."""

  code: Optional[str] = None
  message: Optional[str] = None
  token: Optional[str] = None
  user: Optional[str] = None
  path_token: Optional[str] = None


class Redirect(BaseModel):
  url: str
  delay_seconds: float = 0.0


class HandshakeView(BaseModel):
  """Snapshot of a handshake for presentation."""

  id: str
  state: HandshakeState
  message: str = ""
  error_code: Optional[str] = None
  retry_count: int = 0
  retries_remaining: int = 0
  actions: List[HandshakeAction] = Field(default_factory=list)
  redirect: Optional[Redirect] = None


class OrderReceipt(BaseModel):
  order_id: str
  redirect: Redirect
  address_saved: bool = False
  notification_sent: bool = False


class SessionStartRequest(BaseModel):
  requires_delivery: Optional[bool] = None
  customer_id: Optional[str] = None
  table_id: Optional[str] = None


class AccountLoginRequest(BaseModel):
  jwt: str
  user: IssuedUser


class PhoneRequest(BaseModel):
  phone: str


class PaymentRequest(BaseModel):
  method: str
  change_amount: Optional[Union[str, Decimal]] = None


class NotesRequest(BaseModel):
  notes: str = ""


class ConfirmOrderRequest(BaseModel):
  store_name: str = ""
  is_store_open: bool = True


def dump(model: BaseModel) -> Dict[str, Any]:
  """Serializes a model into a JSON-able dict."""
  return model.model_dump(mode="json")
