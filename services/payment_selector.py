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

"""Local validation of the payment method. No network calls happen here."""

from decimal import Decimal
from decimal import InvalidOperation
from typing import Optional, Union

from enums import CheckoutStep
from enums import PaymentMethod
from exceptions import ValidationError
from models import CheckoutSession
from models import PaymentSelection
from services.orchestrator import CheckoutOrchestrator


class PaymentSelector:
  """Validates and records the payment selection."""

  def __init__(self, orchestrator: Optional[CheckoutOrchestrator] = None):
    self.orchestrator = orchestrator

  def validate(
      self,
      method: Optional[str],
      change_amount: Optional[Union[str, Decimal]] = None,
  ) -> PaymentSelection:
    """Builds a payment selection from raw input.

    Args:
      method: One of `pix`, `credit`, `debit`, `cash` or `voucher`.
      change_amount: Cash to bring; required for `cash`, ignored otherwise.

    Returns:
      The validated selection.

    Raises:
      ValidationError: If the method is unknown or the change amount is
        missing, not numeric or negative.
    """
    if not method:
      raise ValidationError({"method": "Select a payment method"})
    try:
      payment_method = PaymentMethod(method)
    except ValueError:
      raise ValidationError(
          {"method": f"Unsupported payment method: {method}"}
      ) from None

    if payment_method != PaymentMethod.CASH:
      return PaymentSelection(method=payment_method)

    if change_amount is None or str(change_amount).strip() == "":
      raise ValidationError(
          {"change_amount": "Inform the amount to bring for change"}
      )
    try:
      amount = Decimal(str(change_amount).strip().replace(",", "."))
    except InvalidOperation:
      raise ValidationError(
          {"change_amount": "Change amount must be a number"}
      ) from None
    if not amount.is_finite() or amount < 0:
      raise ValidationError(
          {"change_amount": "Change amount must be a positive number"}
      )
    return PaymentSelection(method=payment_method, change_amount=amount)

  async def select(
      self,
      method: Optional[str],
      change_amount: Optional[Union[str, Decimal]] = None,
  ) -> CheckoutSession:
    """Records a validated selection and advances from the payment step."""
    selection = self.validate(method, change_amount)
    session = await self.orchestrator.set_payment(selection)
    if session.current_step != CheckoutStep.PAYMENT:
      return session
    return await self.orchestrator.advance()
