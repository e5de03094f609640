"""
fal.ai Queue Client
Submit, poll and fetch results from the fal.ai queue REST API
"""

import asyncio
from pathlib import Path
from typing import Dict, Any, Optional

import aiohttp

from ..config import Settings
from ..utils.exceptions import ProviderError, APIKeyError
from ..utils.logger import get_logger
from ..utils.retry import retry_async

logger = get_logger()

TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class FalQueueClient:
    """Thin aiohttp wrapper over queue.fal.run"""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.base_url = settings.fal_queue_url.rstrip("/")
        self.poll_interval = settings.provider_poll_interval
        self.poll_timeout = settings.provider_poll_timeout
        self._session = session

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            if not self.settings.fal_api_key:
                raise APIKeyError("fal.ai")
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=60),
                headers={
                    "Authorization": f"Key {self.settings.fal_api_key}",
                    "Content-Type": "application/json",
                }
            )
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def submit(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Enqueue a request on fal.ai

        Returns:
            Submit response with request_id, status_url and response_url
        """
        url = f"{self.base_url}/{endpoint}"
        async with self.session.post(url, json=payload) as response:
            body = await _read_json(response)
            if response.status >= 400:
                raise ProviderError("fal.ai", f"submit to {endpoint} failed ({response.status})", body=body)

        if "request_id" not in body:
            raise ProviderError("fal.ai", f"submit to {endpoint} returned no request_id", body=body)

        logger.info(f"fal.ai request queued: {endpoint} -> {body['request_id']}")
        return body

    @retry_async(max_retries=3, base_delay=2.0, retryable_exceptions=TRANSIENT_ERRORS)
    async def status(self, status_url: str) -> Dict[str, Any]:
        async with self.session.get(status_url) as response:
            # 5xx while polling is treated as transient
            if response.status >= 500:
                response.raise_for_status()
            body = await _read_json(response)
            if response.status >= 400:
                raise ProviderError("fal.ai", f"status check failed ({response.status})", body=body)
            return body

    @retry_async(max_retries=3, base_delay=2.0, retryable_exceptions=TRANSIENT_ERRORS)
    async def result(self, response_url: str) -> Dict[str, Any]:
        async with self.session.get(response_url) as response:
            if response.status >= 500:
                response.raise_for_status()
            body = await _read_json(response)
            if response.status >= 400:
                raise ProviderError("fal.ai", f"request failed ({response.status})", body=body)
            return body

    async def run(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit a request and wait for its result

        Raises:
            ProviderError: rejected request, failed generation or timeout
        """
        try:
            return await self._run(endpoint, payload)
        except TRANSIENT_ERRORS as e:
            raise ProviderError("fal.ai", f"{endpoint}: {e}") from e

    async def _run(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        submitted = await self.submit(endpoint, payload)
        request_id = submitted["request_id"]
        status_url = submitted.get("status_url") or f"{self.base_url}/{endpoint}/requests/{request_id}/status"
        response_url = submitted.get("response_url") or f"{self.base_url}/{endpoint}/requests/{request_id}"

        loop = asyncio.get_event_loop()
        deadline = loop.time() + self.poll_timeout

        while True:
            status = await self.status(status_url)
            state = status.get("status")

            if state == "COMPLETED":
                if status.get("error"):
                    raise ProviderError("fal.ai", f"generation failed: {status['error']}", request_id=request_id)
                break
            if state not in ("IN_QUEUE", "IN_PROGRESS"):
                raise ProviderError("fal.ai", f"unexpected status {state!r}", request_id=request_id)

            if loop.time() >= deadline:
                raise ProviderError(
                    "fal.ai",
                    f"request timed out after {self.poll_timeout:.0f}s",
                    request_id=request_id
                )

            logger.debug(f"fal.ai {request_id}: {state}")
            await asyncio.sleep(self.poll_interval)

        return await self.result(response_url)

    async def download(self, url: str, output_path: str) -> str:
        """
        Stream a generated file to disk

        Result URLs point at third-party storage, so the fal.ai key is not sent.
        """
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=600)) as session:
                async with session.get(url) as response:
                    if response.status >= 400:
                        raise ProviderError("fal.ai", f"download failed ({response.status})", url=url)
                    with open(output_path, "wb") as f:
                        async for chunk in response.content.iter_chunked(1024 * 1024):
                            f.write(chunk)
        except TRANSIENT_ERRORS as e:
            raise ProviderError("fal.ai", f"download failed: {e}", url=url) from e
        return output_path


async def _read_json(response: aiohttp.ClientResponse) -> Dict[str, Any]:
    try:
        body = await response.json(content_type=None)
    except ValueError:
        return {"raw": (await response.text())[:500]}
    return body if isinstance(body, dict) else {"data": body}
