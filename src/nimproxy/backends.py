"""Backend handling for the NIM proxy."""

import json
import logging
import httpx
from typing import Dict, Any, Optional

from .config import Settings
from .streaming import StreamingResponseWrapper

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """The backend answered the primary call with a non-2xx status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(response: httpx.Response, content: bytes) -> str:
    text = content.decode(errors="replace")
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return text or f"Request failed with status code {response.status_code}"

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        for key in ("detail", "message"):
            if body.get(key):
                return str(body[key])
    return text


class BackendClient:
    """
    Thin async client for the NIM chat completions endpoint.

    A fresh httpx.AsyncClient is opened per call. Streams keep theirs open
    until the StreamingResponseWrapper is closed.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.settings.timeout)

    def headers(self, authorization: Optional[str] = None) -> Dict[str, str]:
        """
        Build outbound headers.

        The configured API key wins; otherwise the inbound Authorization header
        is passed through unchanged.
        """
        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        elif authorization:
            headers["Authorization"] = authorization
        return headers

    async def probe(self, model: str, authorization: Optional[str] = None) -> bool:
        """
        Check whether the backend accepts a model id with a one-token request.

        Never raises: rejections and transport errors both return False.
        """
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": "test"}],
            "max_tokens": 1,
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    self.settings.chat_completions_url,
                    json=payload,
                    headers=self.headers(authorization),
                )
        except httpx.HTTPError as e:
            logger.warning(f"Probe for model {model} failed: {str(e)}")
            return False

        if response.is_success:
            return True
        logger.info(
            "Backend rejected model %s during probe with status %s",
            model,
            response.status_code,
        )
        return False

    async def create_completion(
        self, payload: Dict[str, Any], authorization: Optional[str] = None
    ) -> Dict[str, Any]:
        """Send a non-streamed chat completion and return the decoded JSON body."""
        logger.info(f"Calling backend at {self.settings.chat_completions_url}")
        async with self._client() as client:
            response = await client.post(
                self.settings.chat_completions_url,
                json=payload,
                headers=self.headers(authorization),
            )
            content = await response.aread()

        if not response.is_success:
            message = _error_message(response, content)
            logger.error(f"Backend returned {response.status_code}: {message}")
            raise BackendError(response.status_code, message)

        return json.loads(content)

    async def open_stream(
        self, payload: Dict[str, Any], authorization: Optional[str] = None
    ) -> StreamingResponseWrapper:
        """
        Start a streamed chat completion.

        The status is checked before any body is consumed, so backend errors
        raise BackendError while the caller can still answer with an error
        envelope.
        """
        logger.info(f"Opening stream to backend at {self.settings.chat_completions_url}")
        client = self._client()
        try:
            request = client.build_request(
                "POST",
                self.settings.chat_completions_url,
                json=payload,
                headers=self.headers(authorization),
            )
            response = await client.send(request, stream=True)
        except BaseException:
            await client.aclose()
            raise

        if not response.is_success:
            try:
                content = await response.aread()
            finally:
                await response.aclose()
                await client.aclose()
            message = _error_message(response, content)
            logger.error(f"Backend returned {response.status_code}: {message}")
            raise BackendError(response.status_code, message)

        return StreamingResponseWrapper(response, client)
