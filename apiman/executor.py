"""apiman executor - HTTP request execution."""

import json
import time
from typing import Any

import requests
from requests.structures import CaseInsensitiveDict

from apiman.core import ApimanError
from apiman.resolver import ResolvedRequest

CHUNK_SIZE = 8192


class TransportError(ApimanError):
    """The HTTP call failed or timed out."""


class RequestResult:
    """Result of an HTTP request."""

    def __init__(self):
        self.status_code: int = 0
        self.reason: str = ""
        self.headers: dict[str, str] = {}
        self.content: bytes = b""
        self.text: str = ""
        self.elapsed_ms: float = 0

    def json(self) -> Any:
        """Parsed JSON body, or None when the body is not JSON."""
        try:
            return json.loads(self.text)
        except (json.JSONDecodeError, ValueError):
            return None


def execute_request(request: ResolvedRequest) -> RequestResult:
    """Issue exactly one HTTP call for a resolved request.

    No retries. Timeouts and transport failures raise TransportError
    with the underlying message; the response is returned unprocessed.

    requests applies ``timeout`` to the connect and to each socket read,
    so the body is streamed and the whole call is also held to the same
    wall-clock bound.
    """
    result = RequestResult()

    kwargs: dict[str, Any] = {
        "method": request.method.upper(),
        "url": request.url,
        "headers": CaseInsensitiveDict(request.headers),
        "cookies": dict(request.cookies) or None,
        "data": request.body.encode("utf-8") if request.body else None,
        "timeout": request.timeout,
        "stream": True,
    }

    timed_out = TransportError(f"Request timed out after {request.timeout}s")
    try:
        start = time.monotonic()
        deadline = start + request.timeout
        resp = requests.request(**kwargs)
        try:
            chunks = []
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    raise timed_out
        finally:
            resp.close()
        result.elapsed_ms = (time.monotonic() - start) * 1000
    except TransportError:
        raise
    except requests.exceptions.Timeout as e:
        raise timed_out from e
    except requests.exceptions.ConnectionError as e:
        raise TransportError(f"Connection error: {e}") from e
    except requests.exceptions.RequestException as e:
        raise TransportError(f"Request failed: {e}") from e
    except Exception as e:
        # Header encoding, invalid timeout values and similar failures
        # raised before anything reaches the wire.
        raise TransportError(f"Request failed: {e}") from e

    result.status_code = resp.status_code
    result.reason = resp.reason or ""
    result.headers = dict(resp.headers)
    result.content = b"".join(chunks)
    try:
        result.text = result.content.decode(resp.encoding or "utf-8", errors="replace")
    except LookupError:
        result.text = result.content.decode("utf-8", errors="replace")
    return result
