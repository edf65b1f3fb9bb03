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

"""Magic-link authentication handshake.

A handshake starts when the customer opens the link delivered over WhatsApp.
The callback carries either an error code, a ready token plus user pair, or a
raw token that must be verified with the backend. The handshake is an explicit
state machine:

  idle -> loading -> success | expired | invalid | error
  error -> loading (bounded retry)

Every transition is appended to the handshake audit log. A cancelled handshake
never changes state again.
"""

import asyncio
import json
import logging
import re
from typing import Dict, FrozenSet, List, Optional, Tuple
import uuid

import config
import db
from enums import CheckoutStep
from enums import HandshakeAction
from enums import HandshakeErrorCode
from enums import HandshakeState
from exceptions import BackendError
from exceptions import HandshakeError
from models import CallbackParams
from models import HandshakeView
from models import IssuedUser
from models import Redirect
from models import VerificationOk
from pydantic import ValidationError as PydanticValidationError
from services.auth_resolver import AuthenticationResolver
from services.backend_client import BackendClient
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

CHECKOUT_PATH = "/checkout"

_TRANSITIONS: Dict[HandshakeState, FrozenSet[HandshakeState]] = {
    HandshakeState.IDLE: frozenset({HandshakeState.LOADING}),
    HandshakeState.LOADING: frozenset({
        HandshakeState.SUCCESS,
        HandshakeState.EXPIRED,
        HandshakeState.INVALID,
        HandshakeState.ERROR,
    }),
    HandshakeState.ERROR: frozenset({HandshakeState.LOADING}),
    HandshakeState.SUCCESS: frozenset(),
    HandshakeState.EXPIRED: frozenset(),
    HandshakeState.INVALID: frozenset(),
}

_EXPIRED_RE = re.compile(r"expired|expirado", re.IGNORECASE)
_INVALID_RE = re.compile(r"invalid|inv[aá]lido|already used", re.IGNORECASE)

_MESSAGES = {
    HandshakeState.IDLE: "",
    HandshakeState.LOADING: "Verifying your access link...",
    HandshakeState.SUCCESS: "Authenticated! Taking you back to checkout...",
    HandshakeState.EXPIRED: (
        "This access link has expired. Request a new one to continue."
    ),
    HandshakeState.INVALID: (
        "This access link is invalid or was already used. Request a new one"
        " to continue."
    ),
}


def classify_failure(
    code: Optional[str], message: Optional[str]
) -> Tuple[HandshakeState, str]:
  """Maps a failure code and message to a terminal state and error code."""
  message = message or ""
  if code == HandshakeErrorCode.TOKEN_EXPIRED.value or _EXPIRED_RE.search(
      message
  ):
    return HandshakeState.EXPIRED, HandshakeErrorCode.TOKEN_EXPIRED.value
  if code == HandshakeErrorCode.TOKEN_INVALID.value or _INVALID_RE.search(
      message
  ):
    return HandshakeState.INVALID, HandshakeErrorCode.TOKEN_INVALID.value
  return HandshakeState.ERROR, code or HandshakeErrorCode.UNKNOWN_ERROR.value


class MagicLinkHandshake:
  """Drives one magic-link callback to an authenticated checkout session."""

  def __init__(
      self,
      store_id: str,
      resolver: AuthenticationResolver,
      backend: BackendClient,
      session_factory: Optional[sessionmaker] = None,
      max_retries: Optional[int] = None,
      retry_backoff: Optional[float] = None,
      redirect_delay: Optional[float] = None,
  ):
    self.id = f"hs_{uuid.uuid4().hex}"
    self.store_id = store_id
    self.resolver = resolver
    self.backend = backend
    self.session_factory = session_factory
    self.max_retries = (
        config.get_handshake_max_retries()
        if max_retries is None
        else max_retries
    )
    self.retry_backoff = (
        config.get_handshake_retry_backoff()
        if retry_backoff is None
        else retry_backoff
    )
    self.redirect_delay = (
        config.get_handshake_redirect_delay()
        if redirect_delay is None
        else redirect_delay
    )

    self.state = HandshakeState.IDLE
    self.error_code: Optional[str] = None
    self.error_message = ""
    self.retry_count = 0
    self.cancelled = False
    self.redirect: Optional[Redirect] = None
    self.history: List[Tuple[HandshakeState, HandshakeState]] = []

    self._path_token: Optional[str] = None
    self._has_token = False
    self._has_user = False
    self._retry_task: Optional[asyncio.Task] = None

  @property
  def device_id(self) -> str:
    return self.resolver.credentials.device_id

  @property
  def retry_pending(self) -> bool:
    return self._retry_task is not None and not self._retry_task.done()

  @property
  def can_retry(self) -> bool:
    return (
        not self.cancelled
        and not self.retry_pending
        and self.state == HandshakeState.ERROR
        and self._path_token is not None
        and self.retry_count < self.max_retries
    )

  async def start(self, params: CallbackParams) -> HandshakeView:
    """Consumes the callback parameters and runs the handshake."""
    if self.state != HandshakeState.IDLE:
      logger.warning("Handshake %s already started", self.id)
      return self.view()

    self._has_token = bool(params.token or params.path_token)
    self._has_user = bool(params.user)
    if not await self._transition(HandshakeState.LOADING):
      return self.view()

    if params.code:
      state, code = classify_failure(params.code, params.message)
      await self._fail(state, code, params.message)
    elif params.token and params.user:
      await self._accept_redirected_pair(params.token, params.user)
    elif params.path_token:
      self._path_token = params.path_token
      await self._verify()
    else:
      await self._fail(
          HandshakeState.ERROR,
          HandshakeErrorCode.NO_TOKEN.value,
          "No access token was found in the link.",
      )
    return self.view()

  async def retry(self) -> HandshakeView:
    """Re-runs verification after the backoff.

    Raises:
      HandshakeError: If a retry is already waiting or no retry is available
        in the current state.
    """
    if self.retry_pending:
      raise HandshakeError(
          HandshakeError.INDETERMINATE,
          "A retry is already in progress.",
          code="RETRY_IN_PROGRESS",
          status_code=409,
      )
    if not self.can_retry:
      kind = {
          HandshakeState.EXPIRED: HandshakeError.EXPIRED,
          HandshakeState.INVALID: HandshakeError.INVALID,
      }.get(self.state, HandshakeError.INDETERMINATE)
      raise HandshakeError(
          kind,
          "Retry is not available; request a new access link.",
          code="RETRY_UNAVAILABLE",
      )

    task = asyncio.ensure_future(self._retry_after_backoff())
    self._retry_task = task
    try:
      await task
    except asyncio.CancelledError:
      if not self.cancelled:
        raise
    finally:
      if self._retry_task is task:
        self._retry_task = None
    return self.view()

  def cancel(self) -> None:
    """Stops the handshake; pending retries are abandoned."""
    if self.cancelled:
      return
    self.cancelled = True
    if self._retry_task is not None and not self._retry_task.done():
      self._retry_task.cancel()
    logger.info("Handshake %s cancelled in state %s", self.id, self.state.value)

  async def return_to_checkout(self) -> Redirect:
    """Abandons the handshake and sends the customer back to authentication.

    A credential issued by this handshake is removed so no half-authenticated
    state survives.
    """
    if self.state == HandshakeState.SUCCESS:
      return Redirect(url=CHECKOUT_PATH)

    self.cancel()
    credentials = self.resolver.credentials
    if await credentials.clear(self.store_id, handshake_id=self.id):
      logger.info("Removed credential issued by handshake %s", self.id)
    orchestrator = self.resolver.orchestrator
    await orchestrator.start(self.store_id)
    await orchestrator.go_to(CheckoutStep.AUTHENTICATION)
    return Redirect(url=CHECKOUT_PATH)

  def view(self) -> HandshakeView:
    actions = []
    if self.state == HandshakeState.ERROR:
      if self.can_retry:
        actions.append(HandshakeAction.RETRY)
      actions.append(HandshakeAction.REQUEST_NEW_LINK)
    elif self.state in (HandshakeState.EXPIRED, HandshakeState.INVALID):
      actions.append(HandshakeAction.REQUEST_NEW_LINK)

    retries_remaining = 0
    if self._path_token is not None and self.state in (
        HandshakeState.LOADING,
        HandshakeState.ERROR,
    ):
      retries_remaining = max(self.max_retries - self.retry_count, 0)

    message = _MESSAGES.get(self.state)
    if self.state == HandshakeState.ERROR:
      message = self.error_message or "We could not verify your access link."
    return HandshakeView(
        id=self.id,
        state=self.state,
        message=message,
        error_code=self.error_code,
        retry_count=self.retry_count,
        retries_remaining=retries_remaining,
        actions=actions,
        redirect=self.redirect,
    )

  async def _retry_after_backoff(self) -> None:
    await asyncio.sleep(self.retry_backoff)
    if self.cancelled:
      return
    self.retry_count += 1
    logger.info(
        "Handshake %s retry %d of %d",
        self.id,
        self.retry_count,
        self.max_retries,
    )
    if await self._transition(HandshakeState.LOADING):
      await self._verify()

  async def _verify(self) -> None:
    try:
      result = await self.backend.verify_magic_link(self._path_token)
    except BackendError as e:
      logger.warning("Verification of handshake %s failed: %s", self.id, e)
      await self._fail(
          HandshakeState.ERROR,
          HandshakeErrorCode.VERIFICATION_FAILED.value,
          "We could not reach the verification service. Try again.",
      )
      return

    if self.cancelled:
      return
    if isinstance(result, VerificationOk):
      self._has_user = True
      await self._complete(result.token, result.user)
      return

    state, code = classify_failure(result.code, result.message)
    await self._fail(state, code, result.message)

  async def _accept_redirected_pair(self, token: str, raw_user: str) -> None:
    try:
      user = IssuedUser.model_validate(json.loads(raw_user))
    except (ValueError, PydanticValidationError) as e:
      logger.warning("Unreadable user in callback of %s: %s", self.id, e)
      await self._fail(
          HandshakeState.ERROR,
          HandshakeErrorCode.CALLBACK_ERROR.value,
          "The access link is malformed.",
      )
      return
    await self._complete(token, user)

  async def _complete(self, jwt: str, user: IssuedUser) -> None:
    if self.cancelled:
      return
    try:
      await self.resolver.orchestrator.start(self.store_id)
      await self.resolver.complete_account_login(
          jwt, user, handshake_id=self.id
      )
    except SQLAlchemyError as e:
      logger.error("Failed to store credential of %s: %s", self.id, e)
      await self.resolver.credentials.clear(
          self.store_id, handshake_id=self.id
      )
      await self._fail(
          HandshakeState.ERROR,
          HandshakeErrorCode.UNKNOWN_ERROR.value,
          "We could not complete your login. Try again.",
      )
      return

    self.redirect = Redirect(
        url=CHECKOUT_PATH, delay_seconds=self.redirect_delay
    )
    await self._transition(HandshakeState.SUCCESS)

  async def _fail(
      self, state: HandshakeState, code: str, message: Optional[str]
  ) -> None:
    self.error_code = code
    self.error_message = message or ""
    await self._transition(state)

  async def _transition(self, to_state: HandshakeState) -> bool:
    if self.cancelled:
      return False
    from_state = self.state
    if to_state not in _TRANSITIONS[from_state]:
      raise ValueError(
          f"Illegal handshake transition {from_state.value} ->"
          f" {to_state.value}"
      )
    self.state = to_state
    self.history.append((from_state, to_state))
    error_code = self.error_code if to_state in (
        HandshakeState.EXPIRED,
        HandshakeState.INVALID,
        HandshakeState.ERROR,
    ) else None
    logger.info(
        "Handshake %s: %s -> %s (token=%s, user=%s, error=%s)",
        self.id,
        from_state.value,
        to_state.value,
        self._has_token,
        self._has_user,
        error_code,
    )
    await self._audit(from_state, to_state, error_code)
    return True

  async def _audit(
      self,
      from_state: HandshakeState,
      to_state: HandshakeState,
      error_code: Optional[str],
  ) -> None:
    if self.session_factory is None:
      return
    try:
      async with self.session_factory() as db_session:
        await db.log_handshake_transition(
            db_session,
            self.id,
            self.device_id,
            from_state.value,
            to_state.value,
            self._has_token,
            self._has_user,
            error_code,
        )
        await db_session.commit()
    except SQLAlchemyError as e:
      logger.warning("Failed to audit handshake %s: %s", self.id, e)


class HandshakeRegistry:
  """In-process registry holding the live handshake of each device."""

  def __init__(self):
    self._handshakes: Dict[str, MagicLinkHandshake] = {}

  def get(self, device_id: str) -> Optional[MagicLinkHandshake]:
    return self._handshakes.get(device_id)

  def put(self, handshake: MagicLinkHandshake) -> None:
    previous = self._handshakes.get(handshake.device_id)
    if previous is not None and previous is not handshake:
      previous.cancel()
    self._handshakes[handshake.device_id] = handshake

  def release(self, handshake: MagicLinkHandshake) -> None:
    """Forgets a handshake that finished successfully."""
    if handshake.state != HandshakeState.SUCCESS:
      return
    if self._handshakes.get(handshake.device_id) is handshake:
      del self._handshakes[handshake.device_id]

  def __len__(self) -> int:
    return len(self._handshakes)

  def discard(self, device_id: str) -> None:
    handshake = self._handshakes.pop(device_id, None)
    if handshake is not None:
      handshake.cancel()
