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

"""Shared helpers for the checkout service tests."""

import asyncio
import datetime
import json
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional, Tuple

from absl.testing import absltest
import db
import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

BACKEND_URL = "http://backend.test"
POSTAL_CODE_URL = "http://cep.test/ws"


class FakeClock:
  """A controllable UTC clock."""

  def __init__(self, start: Optional[datetime.datetime] = None):
    self.now = start or datetime.datetime(
        2026, 1, 15, 12, 0, tzinfo=datetime.timezone.utc
    )

  def __call__(self) -> datetime.datetime:
    return self.now

  def advance(self, **kwargs) -> None:
    self.now += datetime.timedelta(**kwargs)


class FakeHttpService:
  """Answers httpx requests with canned JSON responses and records them."""

  def __init__(self):
    self.responses: Dict[Tuple[str, str], Tuple[int, Any, Any, Any]] = {}
    self.requests: List[httpx.Request] = []

  def add(
      self,
      method: str,
      path: str,
      status: int = 200,
      body: Any = None,
      error: Optional[Exception] = None,
      text: Optional[str] = None,
  ) -> None:
    self.responses[(method, path)] = (status, body, error, text)

  def handler(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    key = (request.method, request.url.path)
    if key not in self.responses:
      return httpx.Response(404, json={"message": "Not found"})
    status, body, error, text = self.responses[key]
    if error is not None:
      raise error
    if text is not None:
      return httpx.Response(status, text=text)
    return httpx.Response(status, json=body)

  @property
  def transport(self) -> httpx.MockTransport:
    return httpx.MockTransport(self.handler)

  def calls(self, method: str, path: str) -> List[httpx.Request]:
    return [
        r
        for r in self.requests
        if r.method == method and r.url.path == path
    ]

  def last_json(self, method: str, path: str) -> Any:
    return json.loads(self.calls(method, path)[-1].content)


class DatabaseTestCase(absltest.TestCase):
  """Test case with a temporary checkout database and a fake clock."""

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.db_path = os.path.join(self.test_dir, "test_checkout.db")
    # Each asyncio.run uses its own loop, so connections are never pooled.
    self.engine = create_async_engine(
        f"sqlite+aiosqlite:///{self.db_path}", echo=False, poolclass=NullPool
    )
    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async def init_schema() -> None:
      async with self.engine.begin() as conn:
        await conn.run_sync(db.CheckoutBase.metadata.create_all)

    asyncio.run(init_schema())
    self.clock = FakeClock()

  def tearDown(self) -> None:
    asyncio.run(self.engine.dispose())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def run_async(self, coro):
    return asyncio.run(coro)
