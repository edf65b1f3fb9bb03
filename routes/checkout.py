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

"""Checkout session routes for the menu checkout service."""

from typing import Any, Optional

import dependencies
from enums import CheckoutStep
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from models import AccountLoginRequest
from models import AddressForm
from models import CheckoutSession
from models import ConfirmOrderRequest
from models import CustomerData
from models import DeliveryAddress
from models import dump
from models import NotesRequest
from models import PaymentRequest
from models import PhoneRequest
from models import SessionStartRequest
from services.address_resolver import AddressResolver
from services.address_resolver import format_address_for_display
from services.address_resolver import prefill
from services.auth_resolver import AuthenticationResolver
from services.order_finalizer import OrderFinalizer
from services.orchestrator import CheckoutOrchestrator
from services.payment_selector import PaymentSelector

router = APIRouter(prefix="/stores/{store_id}/checkout")


def _state(
    orchestrator: CheckoutOrchestrator, session: CheckoutSession
) -> dict[str, Any]:
  store = orchestrator.store
  return {
      "session": dump(session),
      "progress": store.progress_percentage(session),
      "address_display": format_address_for_display(session.selected_address),
      "warning": store.last_warning,
  }


@router.post("", operation_id="start_checkout")
async def start_checkout(
    store_id: str = Path(...),
    request: Optional[SessionStartRequest] = Body(None),
    resolver: AuthenticationResolver = Depends(
        dependencies.get_auth_resolver
    ),
) -> dict[str, Any]:
  """Resumes or creates the session and applies the authentication rules."""
  request = request or SessionStartRequest()
  orchestrator = resolver.orchestrator
  await orchestrator.start(
      store_id,
      requires_delivery=request.requires_delivery,
      customer_id=request.customer_id,
      table_id=request.table_id,
  )
  session = await resolver.resolve_on_entry()
  return _state(orchestrator, session)


@router.get("", operation_id="get_checkout")
async def get_checkout(
    orchestrator: CheckoutOrchestrator = Depends(
        dependencies.get_active_orchestrator
    ),
) -> dict[str, Any]:
  return _state(orchestrator, await orchestrator.get_state())


@router.delete("", operation_id="cancel_checkout")
async def cancel_checkout(
    orchestrator: CheckoutOrchestrator = Depends(
        dependencies.get_active_orchestrator
    ),
) -> dict[str, Any]:
  await orchestrator.cancel()
  return {"status": "cancelled"}


@router.post("/reset", operation_id="reset_checkout")
async def reset_checkout(
    orchestrator: CheckoutOrchestrator = Depends(
        dependencies.get_active_orchestrator
    ),
) -> dict[str, Any]:
  return _state(orchestrator, await orchestrator.reset())


@router.post("/advance", operation_id="advance_checkout")
async def advance_checkout(
    orchestrator: CheckoutOrchestrator = Depends(
        dependencies.get_active_orchestrator
    ),
) -> dict[str, Any]:
  return _state(orchestrator, await orchestrator.advance())


@router.post("/back", operation_id="back_checkout")
async def back_checkout(
    orchestrator: CheckoutOrchestrator = Depends(
        dependencies.get_active_orchestrator
    ),
) -> dict[str, Any]:
  transition = await orchestrator.back()
  return {
      **_state(orchestrator, transition.session),
      "moved": transition.moved,
      "reason": transition.reason,
  }


@router.post("/steps/{step}", operation_id="go_to_step")
async def go_to_step(
    step: CheckoutStep = Path(...),
    orchestrator: CheckoutOrchestrator = Depends(
        dependencies.get_active_orchestrator
    ),
) -> dict[str, Any]:
  """Jumps to a step; a blocked jump reports the reason and changes nothing."""
  transition = await orchestrator.go_to(step)
  return {
      **_state(orchestrator, transition.session),
      "moved": transition.moved,
      "reason": transition.reason,
  }


@router.post("/auth/guest", operation_id="continue_as_guest")
async def continue_as_guest(
    resolver: AuthenticationResolver = Depends(
        dependencies.get_active_auth_resolver
    ),
) -> dict[str, Any]:
  session = await resolver.continue_as_guest()
  return _state(resolver.orchestrator, session)


@router.post("/auth/account", operation_id="account_login")
async def account_login(
    request: AccountLoginRequest = Body(...),
    resolver: AuthenticationResolver = Depends(
        dependencies.get_active_auth_resolver
    ),
) -> dict[str, Any]:
  session = await resolver.complete_account_login(request.jwt, request.user)
  return _state(resolver.orchestrator, session)


@router.post("/auth/phone", operation_id="request_magic_link")
async def request_magic_link(
    request: PhoneRequest = Body(...),
    resolver: AuthenticationResolver = Depends(
        dependencies.get_active_auth_resolver
    ),
) -> dict[str, Any]:
  """Sends a WhatsApp access link to the informed phone."""
  result = await resolver.request_magic_link(request.phone)
  return dump(result)


@router.put("/customer-data", operation_id="set_customer_data")
async def set_customer_data(
    data: CustomerData = Body(...),
    orchestrator: CheckoutOrchestrator = Depends(
        dependencies.get_active_orchestrator
    ),
) -> dict[str, Any]:
  session = await orchestrator.set_customer_data(data)
  if session.current_step == CheckoutStep.CUSTOMER_DATA:
    session = await orchestrator.advance()
  return _state(orchestrator, session)


@router.get("/addresses", operation_id="list_addresses")
async def list_addresses(
    resolver: AddressResolver = Depends(dependencies.get_address_resolver),
) -> dict[str, Any]:
  session = await resolver.orchestrator.get_state()
  saved = await resolver.list_saved_addresses()
  return {
      "addresses": [dump(address) for address in saved],
      "show_new_address_form": resolver.shows_new_address_form(session, saved),
  }


@router.post("/postal-code", operation_id="lookup_postal_code")
async def lookup_postal_code(
    form: AddressForm = Body(...),
    resolver: AddressResolver = Depends(dependencies.get_address_resolver),
) -> dict[str, Any]:
  """Pre-fills the address form from its postal code, when it is known."""
  lookup = await resolver.lookup_postal_code(form.zip_code or "")
  return {"found": lookup is not None, "form": dump(prefill(form, lookup))}


@router.post("/address", operation_id="confirm_new_address")
async def confirm_new_address(
    form: AddressForm = Body(...),
    resolver: AddressResolver = Depends(dependencies.get_address_resolver),
) -> dict[str, Any]:
  session = await resolver.confirm_new(form)
  return _state(resolver.orchestrator, session)


@router.post("/address/saved", operation_id="select_saved_address")
async def select_saved_address(
    address: DeliveryAddress = Body(...),
    resolver: AddressResolver = Depends(dependencies.get_address_resolver),
) -> dict[str, Any]:
  session = await resolver.select_saved(address)
  return _state(resolver.orchestrator, session)


@router.put("/payment", operation_id="select_payment")
async def select_payment(
    request: PaymentRequest = Body(...),
    selector: PaymentSelector = Depends(dependencies.get_payment_selector),
) -> dict[str, Any]:
  session = await selector.select(request.method, request.change_amount)
  return _state(selector.orchestrator, session)


@router.put("/notes", operation_id="set_order_notes")
async def set_order_notes(
    request: NotesRequest = Body(...),
    orchestrator: CheckoutOrchestrator = Depends(
        dependencies.get_active_orchestrator
    ),
) -> dict[str, Any]:
  session = await orchestrator.set_order_notes(request.notes)
  return _state(orchestrator, session)


@router.post("/confirm", operation_id="confirm_order")
async def confirm_order(
    request: Optional[ConfirmOrderRequest] = Body(None),
    finalizer: OrderFinalizer = Depends(dependencies.get_order_finalizer),
) -> dict[str, Any]:
  """Submits the order and clears the cart and the session."""
  request = request or ConfirmOrderRequest()
  receipt = await finalizer.submit(
      store_name=request.store_name, is_store_open=request.is_store_open
  )
  return dump(receipt)
