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

"""Integration tests for the Menu Checkout Server."""

from decimal import Decimal
import json
from typing import Any, Dict, Optional

from absl.testing import absltest
import checkout_testing
import dependencies
from fastapi.testclient import TestClient
from models import Cart
from models import CartItem
from server import app
from services.backend_client import BackendClient
from services.cart import CartProvider
from services.handshake import HandshakeRegistry
from services.postal_code_client import PostalCodeClient

STORE_ID = "store-1"
DEVICE_ID = "device-abc"
CHECKOUT = f"/stores/{STORE_ID}/checkout"


class IntegrationTest(checkout_testing.DatabaseTestCase):
  """Drives the checkout through the HTTP API."""

  def setUp(self) -> None:
    super().setUp()
    self.backend = checkout_testing.FakeHttpService()
    self.backend.add(
        "POST", "/orders", status=201, body={"identify": "ord-99"}
    )
    self.backend.add(
        "POST", "/notifications/order-confirmation", status=202, body={}
    )
    self.cep = checkout_testing.FakeHttpService()
    self.cep.add(
        "GET",
        "/ws/01310100/json/",
        body={
            "logradouro": "Avenida Paulista",
            "bairro": "Bela Vista",
            "localidade": "Sao Paulo",
            "uf": "SP",
        },
    )
    self.memory = {}
    self.registry = HandshakeRegistry()
    self.in_flight = set()

    # Define dependency overrides
    def override_get_session_factory():
      return self.session_factory

    def override_get_backend_client() -> BackendClient:
      return BackendClient(
          base_url=checkout_testing.BACKEND_URL,
          transport=self.backend.transport,
      )

    def override_get_postal_code_client() -> PostalCodeClient:
      return PostalCodeClient(
          base_url=checkout_testing.POSTAL_CODE_URL,
          transport=self.cep.transport,
      )

    app.dependency_overrides[dependencies.get_session_factory] = (
        override_get_session_factory
    )
    app.dependency_overrides[dependencies.get_backend_client] = (
        override_get_backend_client
    )
    app.dependency_overrides[dependencies.get_postal_code_client] = (
        override_get_postal_code_client
    )
    app.dependency_overrides[dependencies.get_memory_fallback] = (
        lambda: self.memory
    )
    app.dependency_overrides[dependencies.get_handshake_registry] = (
        lambda: self.registry
    )
    app.dependency_overrides[dependencies.get_orders_in_flight] = (
        lambda: self.in_flight
    )

    self.client = TestClient(app)
    self._seed_cart()

  def tearDown(self) -> None:
    app.dependency_overrides.clear()
    super().tearDown()

  def _seed_cart(self) -> None:
    cart = Cart(
        store_id=STORE_ID,
        items=[
            CartItem(
                identify="p1",
                name="Pizza Margherita",
                quantity=1,
                price=Decimal("45.90"),
            )
        ],
    )
    provider = CartProvider(self.session_factory, DEVICE_ID)
    self.run_async(provider.save_cart(cart))

  def _call(
      self,
      method: str,
      path: str,
      body: Optional[Dict[str, Any]] = None,
      params: Optional[Dict[str, str]] = None,
      expected_status: int = 200,
  ) -> Dict[str, Any]:
    response = self.client.request(
        method,
        path,
        json=body,
        params=params,
        headers={"X-Device-Id": DEVICE_ID},
    )
    self.assertEqual(
        response.status_code,
        expected_status,
        f"{method} {path} failed: {response.text}",
    )
    return response.json()

  def _step(self, state: Dict[str, Any]) -> str:
    return state["session"]["current_step"]

  def test_guest_checkout_end_to_end(self):
    state = self._call("POST", CHECKOUT, {"requires_delivery": True})
    session_id = state["session"]["id"]
    self.assertEqual(self._step(state), "authentication")
    self.assertEqual(state["progress"], 20.0)

    state = self._call("POST", f"{CHECKOUT}/auth/guest")
    self.assertEqual(self._step(state), "customer_data")

    state = self._call(
        "PUT",
        f"{CHECKOUT}/customer-data",
        {"name": "Ana Souza", "phone": "(11) 98765-4321", "email": ""},
    )
    self.assertEqual(self._step(state), "address")

    lookup = self._call(
        "POST",
        f"{CHECKOUT}/postal-code",
        {"zip_code": "01310100", "number": "1000"},
    )
    self.assertTrue(lookup["found"])
    self.assertEqual(lookup["form"]["zip_code"], "01310-100")
    self.assertEqual(lookup["form"]["street"], "Avenida Paulista")

    state = self._call("POST", f"{CHECKOUT}/address", lookup["form"])
    self.assertEqual(self._step(state), "payment")
    self.assertEqual(
        state["address_display"],
        "Avenida Paulista, 1000, Bela Vista, Sao Paulo/SP - CEP 01310-100",
    )

    error = self._call(
        "PUT",
        f"{CHECKOUT}/payment",
        {"method": "cash"},
        expected_status=400,
    )
    self.assertEqual(error["code"], "VALIDATION_ERROR")
    self.assertIn("change_amount", error["field_errors"])

    state = self._call(
        "PUT",
        f"{CHECKOUT}/payment",
        {"method": "cash", "change_amount": "50.00"},
    )
    self.assertEqual(self._step(state), "confirmation")
    self.assertEqual(state["progress"], 100.0)

    state = self._call("PUT", f"{CHECKOUT}/notes", {"notes": "Sem cebola"})
    self.assertEqual(state["session"]["id"], session_id)

    receipt = self._call(
        "POST", f"{CHECKOUT}/confirm", {"store_name": "Pizzaria"}
    )
    self.assertEqual(receipt["order_id"], "ord-99")
    self.assertEqual(receipt["redirect"]["url"], "/orders/ord-99")
    self.assertTrue(receipt["notification_sent"])

    order = self.backend.last_json("POST", "/orders")
    self.assertEqual(order["comment"], "Sem cebola")
    self.assertEqual(order["change_amount"], "50.00")
    self.assertEqual(order["customer_address"]["zip_code"], "01310100")

    error = self._call("GET", CHECKOUT, expected_status=404)
    self.assertEqual(error["code"], "SESSION_NOT_FOUND")

  def test_start_resumes_existing_session(self):
    first = self._call("POST", CHECKOUT)
    self._call("POST", f"{CHECKOUT}/auth/guest")

    resumed = self._call("POST", CHECKOUT)

    self.assertEqual(resumed["session"]["id"], first["session"]["id"])
    self.assertEqual(self._step(resumed), "customer_data")

  def test_blocked_transitions(self):
    self._call("POST", CHECKOUT)

    error = self._call("POST", f"{CHECKOUT}/advance", expected_status=409)
    self.assertEqual(error["code"], "STEP_BLOCKED")
    self.assertEqual(error["step"], "customer_data")

    transition = self._call("POST", f"{CHECKOUT}/steps/payment")
    self.assertFalse(transition["moved"])
    self.assertEqual(transition["reason"], "identity has not been resolved")
    self.assertEqual(self._step(transition), "authentication")

  def test_device_header_is_required(self):
    response = self.client.post(CHECKOUT)
    self.assertEqual(response.status_code, 422)

    response = self.client.post(
        CHECKOUT, headers={"X-Device-Id": "not a device id"}
    )
    self.assertEqual(response.status_code, 400)

  def test_operations_require_a_session(self):
    error = self._call("POST", f"{CHECKOUT}/advance", expected_status=404)
    self.assertEqual(error["code"], "SESSION_NOT_FOUND")

  def test_invalid_phone_is_rejected(self):
    self._call("POST", CHECKOUT)
    error = self._call(
        "POST",
        f"{CHECKOUT}/auth/phone",
        {"phone": "123"},
        expected_status=400,
    )
    self.assertIn("phone", error["field_errors"])
    self.assertEqual(self.backend.requests, [])

  def test_magic_link_callback_authenticates(self):
    self._call("POST", CHECKOUT)
    user = json.dumps({"name": "Test User", "phone": "11999999999"})

    view = self._call(
        "GET",
        "/auth/whatsapp/callback",
        params={"store_id": STORE_ID, "token": "jwt-1", "user": user},
    )
    self.assertEqual(view["state"], "success")
    self.assertEqual(view["redirect"]["url"], "/checkout")

    state = self._call("GET", CHECKOUT)
    self.assertTrue(state["session"]["is_authenticated"])
    self.assertEqual(
        state["session"]["authentication_method"], "new_account"
    )
    self.assertEqual(self._step(state), "address")

    # A successful handshake is not kept around.
    self._call("GET", "/auth/whatsapp/handshake", expected_status=404)
    self.assertEmpty(self.registry)

  def test_failed_callback_returns_to_checkout(self):
    self._call("POST", CHECKOUT)
    view = self._call(
        "GET",
        "/auth/whatsapp/callback",
        params={"store_id": STORE_ID, "code": "TOKEN_EXPIRED"},
    )
    self.assertEqual(view["state"], "expired")
    self.assertEqual(view["actions"], ["request_new_link"])

    redirect = self._call("POST", "/auth/whatsapp/handshake/return")
    self.assertEqual(redirect["url"], "/checkout")

    state = self._call("GET", CHECKOUT)
    self.assertEqual(self._step(state), "authentication")
    self.assertFalse(state["session"]["is_authenticated"])

    error = self._call(
        "GET", "/auth/whatsapp/handshake", expected_status=404
    )
    self.assertEqual(error["code"], "HANDSHAKE_NOT_FOUND")

  def test_path_token_callback_verifies(self):
    self.backend.add(
        "POST",
        "/auth/whatsapp/verify",
        status=400,
        body={"code": "TOKEN_INVALID", "message": "Token already used"},
    )
    view = self._call(
        "GET",
        "/auth/whatsapp/callback/tok-123",
        params={"store_id": STORE_ID},
    )
    self.assertEqual(view["state"], "invalid")
    self.assertEqual(
        self.backend.last_json("POST", "/auth/whatsapp/verify"),
        {"token": "tok-123"},
    )

    error = self._call(
        "POST", "/auth/whatsapp/handshake/retry", expected_status=401
    )
    self.assertEqual(error["code"], "RETRY_UNAVAILABLE")

  def test_cancel_and_reset(self):
    self._call("POST", CHECKOUT, {"requires_delivery": False})
    self._call("POST", f"{CHECKOUT}/auth/guest")

    state = self._call("POST", f"{CHECKOUT}/reset")
    self.assertEqual(self._step(state), "authentication")
    self.assertFalse(state["session"]["is_guest"])
    self.assertFalse(state["session"]["requires_delivery"])

    self.assertEqual(
        self._call("DELETE", CHECKOUT), {"status": "cancelled"}
    )
    self._call("GET", CHECKOUT, expected_status=404)


if __name__ == "__main__":
  absltest.main()
