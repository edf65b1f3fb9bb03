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

"""Custom exceptions for the menu checkout service."""

from typing import Dict, Optional


class CheckoutError(Exception):
  """Base class for all checkout exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)


class ValidationError(CheckoutError):
  """Raised when user-entered data fails local, field-level validation."""

  def __init__(self, field_errors: Dict[str, str]):
    self.field_errors = dict(field_errors)
    first_field = next(iter(self.field_errors), "")
    message = self.field_errors.get(first_field, "Invalid data")
    super().__init__(message, code="VALIDATION_ERROR", status_code=400)


class StepBlockedError(CheckoutError):
  """Raised when a step transition is requested but its precondition fails."""

  def __init__(self, step: str, reason: str):
    self.step = step
    self.reason = reason
    super().__init__(
        f"Cannot enter step '{step}': {reason}",
        code="STEP_BLOCKED",
        status_code=409,
    )


class SessionNotFoundError(CheckoutError):
  """Raised when no live checkout session exists for the store."""

  def __init__(self, message: str = "Checkout session not found"):
    super().__init__(message, code="SESSION_NOT_FOUND", status_code=404)


class HandshakeError(CheckoutError):
  """Raised when the magic-link handshake fails.

  Only indeterminate failures (network, unexpected backend errors) may be
  retried. Expired and invalid tokens can never succeed.
  """

  EXPIRED = "expired"
  INVALID = "invalid"
  INDETERMINATE = "indeterminate"

  def __init__(
      self,
      kind: str,
      message: str,
      code: Optional[str] = None,
      status_code: int = 401,
  ):
    self.kind = kind
    super().__init__(
        message, code=code or "HANDSHAKE_FAILED", status_code=status_code
    )

  @property
  def retryable(self) -> bool:
    return self.kind == self.INDETERMINATE


class SubmissionError(CheckoutError):
  """Raised when the backend rejects or fails to create the order."""

  def __init__(self, message: str, status_code: int = 502):
    super().__init__(message, code="SUBMISSION_FAILED", status_code=status_code)


class SubmissionInProgressError(CheckoutError):
  """Raised when an order is submitted while another submit is in flight."""

  def __init__(self):
    super().__init__(
        "An order submission is already in progress",
        code="SUBMISSION_IN_PROGRESS",
        status_code=409,
    )


class StoreClosedError(CheckoutError):
  """Raised when the final submit is attempted while the store is closed."""

  def __init__(self):
    super().__init__(
        "The store is closed and cannot accept orders right now",
        code="STORE_CLOSED",
        status_code=409,
    )


class SideEffectError(CheckoutError):
  """Raised by best-effort side effects; logged and never surfaced."""

  def __init__(self, message: str):
    super().__init__(message, code="SIDE_EFFECT_FAILED", status_code=500)


class BackendError(CheckoutError):
  """Raised when an external HTTP service returns an error or is unreachable."""

  def __init__(self, message: str, status_code: int = 502):
    super().__init__(message, code="BACKEND_ERROR", status_code=status_code)


class HandshakeNotFoundError(CheckoutError):
  """Raised when the device has no magic-link handshake in progress."""

  def __init__(self):
    super().__init__(
        "No access link is being verified on this device",
        code="HANDSHAKE_NOT_FOUND",
        status_code=404,
    )
