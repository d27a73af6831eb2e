"""HTTP transport for JSON request/response exchanges."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pydamoov.exceptions import DamoovProtocolError, DamoovTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`HttpTransport`) concrete.
    """

    async def post_json(
        self,
        url: str,
        body: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]: ...


class HttpTransport:
    """aiohttp-backed JSON transport."""

    def __init__(self, http_session: aiohttp.ClientSession) -> None:
        self._http = http_session

    async def post_json(
        self,
        url: str,
        body: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """POST *body* as JSON and return the decoded JSON object.

        Raises
        ------
        DamoovTransportError
            Network failure, timeout or non-2xx status.
        DamoovProtocolError
            The response body is not a JSON object.
        """
        request_headers: dict[str, str] = dict(headers or {})
        if not any(key.lower() == "content-type" for key in request_headers):
            request_headers["content-type"] = "application/json"

        _logger.debug("POST %s", url)

        try:
            async with self._http.post(
                url,
                data=json.dumps(body),
                headers=request_headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise DamoovTransportError(
                        f"HTTP {resp.status} from {url}: {text[:200]}",
                        status_code=resp.status,
                        url=url,
                    )
        except DamoovTransportError:
            raise
        except TimeoutError as exc:
            raise DamoovTransportError(f"Request to {url} timed out", url=url) from exc
        except aiohttp.ClientError as exc:
            raise DamoovTransportError(f"Request to {url} failed: {exc}", url=url) from exc

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DamoovProtocolError(f"Invalid JSON from {url}: {text[:200]}") from exc

        if not isinstance(result, dict):
            raise DamoovProtocolError(f"Expected a JSON object from {url}, got {type(result).__name__}")
        return result

