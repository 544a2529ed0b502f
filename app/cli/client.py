"""
HTTP client for the chatstream CLI.

Wraps httpx.Client with bearer auth, retries on network failures and one
error type per failure class.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

SENSITIVE_HEADERS = ("authorization", "x-api-key")


class APIError(Exception):
    """A request to the chatstream backend failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_text: str = ""):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_text = response_text

    def user_friendly_message(self) -> str:
        return f"[ERROR] {self.message}"


class NetworkError(APIError):
    """Connection refused, DNS failure and similar."""

    def user_friendly_message(self) -> str:
        return (
            f"[ERROR] Cannot connect to the chatstream backend: {self.message}\n"
            f"Start it with `uvicorn app.main:app` or pass --api-base."
        )


class TimeoutError(APIError):
    def user_friendly_message(self) -> str:
        return (
            f"[TIMEOUT] {self.message}\n"
            f"Raise --timeout if the backend is slow to answer."
        )


class HTTPStatusError(APIError):
    """Non-2xx response. ``error_message`` extracts the server's error body."""

    @property
    def error_message(self) -> str:
        try:
            body = json.loads(self.response_text)
        except (json.JSONDecodeError, ValueError):
            return self.response_text[:200]
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return self.response_text[:200]

    def user_friendly_message(self) -> str:
        status = self.status_code or "Unknown"
        return f"[ERROR] HTTP {status}: {self.error_message}"


class JSONParseError(APIError):
    def user_friendly_message(self) -> str:
        return (
            f"[ERROR] Backend returned invalid JSON: {self.message}\n"
            f"Body: {self.response_text[:200]}"
        )


class _StreamContextWrapper:
    """Checks the status code of an httpx stream when the context is entered."""

    def __init__(self, ctx_mgr):
        self.ctx_mgr = ctx_mgr
        self.response = None

    def __enter__(self):
        try:
            self.response = self.ctx_mgr.__enter__()
        except httpx.TimeoutException as e:
            raise TimeoutError("Stream request timeout") from e
        except (httpx.ConnectError, httpx.NetworkError) as e:
            raise NetworkError(str(e)) from e
        if self.response.status_code >= 400:
            self.response.read()
            response_text = self.response.text
            self.ctx_mgr.__exit__(None, None, None)
            raise HTTPStatusError(
                f"HTTP {self.response.status_code}: {response_text[:100]}",
                status_code=self.response.status_code,
                response_text=response_text,
            )
        return self.response

    def __exit__(self, exc_type, exc_val, exc_tb):
        return self.ctx_mgr.__exit__(exc_type, exc_val, exc_tb)


class APIClient:
    """
    httpx.Client wrapper used by every CLI command.

    Network errors and timeouts are retried up to ``retry_times`` attempts;
    4xx/5xx responses are never retried.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        timeout: float = 30.0,
        retry_times: int = 1,
        token: Optional[str] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.retry_times = retry_times

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            trust_env=False,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        if self._client:
            self._client.close()

    def _log_request(self, method: str, path: str, **kwargs):
        headers = kwargs.get("headers") or {}
        safe_headers = {
            k: ("***" if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()
        }
        logger.debug(f"{method} {self.base_url}{path} | headers: {safe_headers}")

    def _send(self, method: str, send: Callable[[], httpx.Response]) -> Dict[str, Any]:
        for attempt in range(1, self.retry_times + 1):
            try:
                return self._process_response(send())
            except httpx.ConnectTimeout as e:
                logger.error(f"{method} failed (attempt {attempt}): {type(e).__name__}: {e}")
                if attempt >= self.retry_times:
                    raise NetworkError("Connection timeout: server may be unreachable") from e
            except httpx.TimeoutException as e:
                logger.error(f"{method} failed (attempt {attempt}): {type(e).__name__}: {e}")
                if attempt >= self.retry_times:
                    raise TimeoutError(f"Request timeout after {self.retry_times} attempts") from e
            except (httpx.ConnectError, httpx.NetworkError) as e:
                logger.error(f"{method} failed (attempt {attempt}): {type(e).__name__}: {e}")
                if attempt >= self.retry_times:
                    raise NetworkError(str(e)) from e
            except httpx.HTTPError as e:
                logger.error(f"{method} failed (attempt {attempt}): {type(e).__name__}: {e}")
                if attempt >= self.retry_times:
                    raise NetworkError(f"HTTP error: {e}") from e
        raise NetworkError("No request attempts were made")

    def get(self, path: str, **kwargs) -> Dict[str, Any]:
        """
        Raises:
            NetworkError: Connection failure
            TimeoutError: Request timeout
            HTTPStatusError: Non-2xx HTTP status
            JSONParseError: JSON parsing failure
        """
        self._log_request("GET", path, **kwargs)
        return self._send("GET", lambda: self._client.get(path, **kwargs))

    def post(self, path: str, json: Optional[Dict[str, Any]] = None, **kwargs) -> Dict[str, Any]:
        self._log_request("POST", path, **kwargs)
        return self._send("POST", lambda: self._client.post(path, json=json, **kwargs))

    def patch(self, path: str, json: Optional[Dict[str, Any]] = None, **kwargs) -> Dict[str, Any]:
        self._log_request("PATCH", path, **kwargs)
        return self._send("PATCH", lambda: self._client.patch(path, json=json, **kwargs))

    def delete(self, path: str, **kwargs) -> Dict[str, Any]:
        self._log_request("DELETE", path, **kwargs)
        return self._send("DELETE", lambda: self._client.delete(path, **kwargs))

    def stream(self, method: str, path: str, json: Optional[Dict[str, Any]] = None, **kwargs):
        """
        Open an SSE request; use as a context manager yielding httpx.Response.

            with client.stream("POST", "/chats", json=payload) as response:
                for line in response.iter_lines():
                    ...
        """
        self._log_request(method, path, **kwargs)

        # no read timeout between sparse server events
        stream_timeout = kwargs.pop("timeout", None)
        if stream_timeout is None:
            stream_timeout = httpx.Timeout(
                connect=self.timeout,
                read=None,
                write=self.timeout,
                pool=self.timeout,
            )

        if json is not None:
            ctx_mgr = self._client.stream(method, path, json=json, timeout=stream_timeout, **kwargs)
        else:
            ctx_mgr = self._client.stream(method, path, timeout=stream_timeout, **kwargs)
        return _StreamContextWrapper(ctx_mgr)

    def _process_response(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code >= 400:
            response_text = response.text
            raise HTTPStatusError(
                f"HTTP {response.status_code}: {response_text[:100]}",
                status_code=response.status_code,
                response_text=response_text,
            )

        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise JSONParseError(
                f"Failed to parse JSON response: {e}",
                response_text=response.text,
            ) from e
