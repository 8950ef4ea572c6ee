"""
HTTP-backed inference stage

Talks to a model service over HTTP with aiohttp:
- load():   polls the service health endpoint until it answers 200
- submit(): POSTs the pydantic request as JSON and validates the JSON reply
            against the stage's response model
"""

import asyncio
import logging
from typing import Optional, Type

import aiohttp
from pydantic import BaseModel, ValidationError

from meetflow.shared.errors import InferenceFailure
from .base import InferenceStageClient

logger = logging.getLogger(__name__)


class HttpStageClient(InferenceStageClient):
    """Stage client for a model service reachable over HTTP."""

    def __init__(
        self,
        name: str,
        base_url: str,
        endpoint: str,
        response_model: Type[BaseModel],
        health_path: str = "/health",
        required: bool = True,
        load_timeout_s: float = 60.0,
        request_timeout_s: float = 30.0,
        health_retry_delay_s: float = 2.0,
    ):
        super().__init__(name, required=required, load_timeout_s=load_timeout_s)
        self.base_url = base_url.rstrip("/")
        self.endpoint = endpoint
        self.response_model = response_model
        self.health_path = health_path
        self.request_timeout_s = request_timeout_s
        self.health_retry_delay_s = health_retry_delay_s
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def health_url(self) -> str:
        return f"{self.base_url}{self.health_path}"

    @property
    def request_url(self) -> str:
        return f"{self.base_url}{self.endpoint}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _load(self) -> None:
        """Poll the health endpoint until the service reports ready."""
        session = self._get_session()
        attempt = 0
        while True:
            attempt += 1
            try:
                async with session.get(self.health_url, timeout=aiohttp.ClientTimeout(total=5)) as resp:
                    if resp.status == 200:
                        logger.info(f"✅ [{self.name}] healthy at {self.health_url} (attempt {attempt})")
                        return
                    logger.debug(f"⏳ [{self.name}] health HTTP {resp.status} (attempt {attempt})")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.debug(f"⏳ [{self.name}] not ready yet (attempt {attempt}): {e}")
            await asyncio.sleep(self.health_retry_delay_s)

    async def _infer(self, request: BaseModel) -> BaseModel:
        session = self._get_session()
        try:
            async with session.post(
                self.request_url,
                json=request.model_dump(),
                timeout=aiohttp.ClientTimeout(total=self.request_timeout_s)
            ) as resp:
                if resp.status != 200:
                    raise InferenceFailure(self.name, f"HTTP {resp.status}")
                data = await resp.json()
        except asyncio.TimeoutError as e:
            raise InferenceFailure(self.name, f"timeout after {self.request_timeout_s}s", cause=e) from e
        except aiohttp.ClientError as e:
            raise InferenceFailure(self.name, str(e), cause=e) from e

        try:
            return self.response_model.model_validate(data)
        except ValidationError as e:
            raise InferenceFailure(self.name, f"invalid response: {e.error_count()} error(s)", cause=e) from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
