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

"""Enumerations for the menu checkout service.

This module defines the enums used throughout the service to represent the
checkout step graph, identity resolution, payment methods and the state of the
magic-link authentication handshake.
"""

import enum


class CheckoutStep(str, enum.Enum):
  AUTHENTICATION = "authentication"
  CUSTOMER_DATA = "customer_data"
  ADDRESS = "address"
  PAYMENT = "payment"
  CONFIRMATION = "confirmation"


# Fixed order of the step graph.
STEP_ORDER = (
    CheckoutStep.AUTHENTICATION,
    CheckoutStep.CUSTOMER_DATA,
    CheckoutStep.ADDRESS,
    CheckoutStep.PAYMENT,
    CheckoutStep.CONFIRMATION,
)


class AuthenticationMethod(str, enum.Enum):
  EXISTING_ACCOUNT = "existing_account"
  NEW_ACCOUNT = "new_account"
  GUEST = "guest"


class PaymentMethod(str, enum.Enum):
  PIX = "pix"
  CREDIT = "credit"
  DEBIT = "debit"
  CASH = "cash"
  VOUCHER = "voucher"


class OrderType(str, enum.Enum):
  DELIVERY = "delivery"
  LOCAL = "local"


class HandshakeState(str, enum.Enum):
  IDLE = "idle"
  LOADING = "loading"
  SUCCESS = "success"
  EXPIRED = "expired"
  INVALID = "invalid"
  ERROR = "error"


class HandshakeErrorCode(str, enum.Enum):
  TOKEN_EXPIRED = "TOKEN_EXPIRED"
  TOKEN_INVALID = "TOKEN_INVALID"
  VERIFICATION_FAILED = "VERIFICATION_FAILED"
  NO_TOKEN = "NO_TOKEN"
  CALLBACK_ERROR = "CALLBACK_ERROR"
  UNKNOWN_ERROR = "UNKNOWN_ERROR"


class HandshakeAction(str, enum.Enum):
  """User actions offered by a handshake in its current state."""

  RETRY = "retry"
  REQUEST_NEW_LINK = "request_new_link"
