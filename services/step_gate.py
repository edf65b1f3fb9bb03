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

"""Step graph of the checkout and the preconditions guarding each step.

The graph is linear, `authentication -> customer_data -> address -> payment ->
confirmation`, with two bypasses: account identities skip `customer_data`
because their profile already supplies the data, and orders that are not
delivered skip `address`.
"""

from typing import List, Optional

from enums import STEP_ORDER
from enums import CheckoutStep
from models import CheckoutSession


class StepGate:
  """Answers which steps a session may enter and which it has completed."""

  def blocking_reason(
      self, step: CheckoutStep, session: CheckoutSession
  ) -> Optional[str]:
    """Returns why `step` cannot be entered, or None when it can."""
    step = CheckoutStep(step)
    if step == CheckoutStep.AUTHENTICATION:
      return None

    if step == CheckoutStep.CUSTOMER_DATA:
      if CheckoutStep.AUTHENTICATION not in session.completed_steps:
        return "authentication has not been completed"
      if not session.is_guest:
        return "customer data is only collected for guests"
      return None

    if step == CheckoutStep.ADDRESS:
      if not session.identity_resolved:
        return "identity has not been resolved"
      if session.is_guest and not _has_name(session):
        return "customer name is required"
      return None

    if step == CheckoutStep.PAYMENT:
      reason = self.blocking_reason(CheckoutStep.ADDRESS, session)
      if reason:
        return reason
      if session.requires_delivery and session.selected_address is None:
        return "a delivery address must be selected"
      return None

    # Confirmation.
    if session.customer_data is None:
      return "customer data is missing"
    if session.requires_delivery and session.selected_address is None:
      return "a delivery address must be selected"
    if session.payment is None:
      return "a payment method must be selected"
    return None

  def can_enter(self, step: CheckoutStep, session: CheckoutSession) -> bool:
    return self.blocking_reason(step, session) is None

  def is_bypassed(self, step: CheckoutStep, session: CheckoutSession) -> bool:
    if step == CheckoutStep.CUSTOMER_DATA:
      return session.is_authenticated
    if step == CheckoutStep.ADDRESS:
      return not session.requires_delivery
    return False

  def exit_satisfied(
      self, step: CheckoutStep, session: CheckoutSession
  ) -> bool:
    """Whether the slice collected by `step` is complete."""
    step = CheckoutStep(step)
    if step == CheckoutStep.AUTHENTICATION:
      return session.identity_resolved
    if step == CheckoutStep.CUSTOMER_DATA:
      return session.is_authenticated or (
          session.is_guest and _has_name(session)
      )
    if step == CheckoutStep.ADDRESS:
      return (
          not session.requires_delivery
          or session.selected_address is not None
      )
    if step == CheckoutStep.PAYMENT:
      return session.payment is not None
    # Confirmation completes only by submitting the order.
    return False

  def completed_prefix(self, session: CheckoutSession) -> List[CheckoutStep]:
    """Steps whose exit criteria hold, in graph order, stopping at a gap."""
    completed = []
    for step in STEP_ORDER:
      if not self.exit_satisfied(step, session):
        break
      completed.append(step)
    return completed

  def next_step(self, session: CheckoutSession) -> CheckoutStep:
    """The step after the current one, honoring the bypasses."""
    index = STEP_ORDER.index(CheckoutStep(session.current_step))
    for step in STEP_ORDER[index + 1:]:
      if not self.is_bypassed(step, session):
        return step
    return CheckoutStep.CONFIRMATION

  def previous_step(self, session: CheckoutSession) -> CheckoutStep:
    index = STEP_ORDER.index(CheckoutStep(session.current_step))
    for step in reversed(STEP_ORDER[:index]):
      if not self.is_bypassed(step, session):
        return step
    return CheckoutStep.AUTHENTICATION


def _has_name(session: CheckoutSession) -> bool:
  return bool(session.customer_data and session.customer_data.name.strip())
