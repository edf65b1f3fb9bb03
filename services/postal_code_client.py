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

"""Best-effort client for the ViaCEP postal code lookup service."""

import logging
from typing import Optional

import config
import httpx
from models import PostalCodeLookup

logger = logging.getLogger(__name__)


class PostalCodeClient:
  """Looks up Brazilian postal codes (CEP)."""

  def __init__(
      self,
      base_url: Optional[str] = None,
      timeout: Optional[float] = None,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.base_url = (base_url or config.get_postal_code_url()).rstrip("/")
    self.timeout = timeout if timeout is not None else config.get_http_timeout()
    self.transport = transport

  async def lookup(self, postal_code: str) -> Optional[PostalCodeLookup]:
    """Returns the address of an 8-digit postal code, or None if unknown.

    Never raises: any failure is logged and reported as None.
    """
    url = f"{self.base_url}/{postal_code}/json/"
    try:
      async with httpx.AsyncClient(
          timeout=self.timeout, transport=self.transport
      ) as client:
        response = await client.get(url)
      if response.status_code != 200:
        logger.warning(
            "Postal code lookup for %s failed: Status %d",
            postal_code,
            response.status_code,
        )
        return None
      body = response.json()
    except httpx.RequestError as e:
      logger.warning(
          "Network error looking up postal code %s: %s", postal_code, e
      )
      return None
    except ValueError as e:
      logger.warning(
          "Malformed postal code response for %s: %s", postal_code, e
      )
      return None

    if not isinstance(body, dict) or body.get("erro"):
      logger.info("Postal code %s not found", postal_code)
      return None
    return PostalCodeLookup(
        zip_code=postal_code,
        street=body.get("logradouro") or "",
        neighborhood=body.get("bairro") or "",
        city=body.get("localidade") or "",
        state=body.get("uf") or "",
    )
