"""
Shared HTTP request helpers for service backends.

Keeps JSON request/response handling and error mapping consistent for
engine clients: every non-success status or undecodable body becomes an
ExternalServiceException carrying the status and URL.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import aiohttp

from core.exceptions import ExternalServiceException

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


async def request_json(
    method: str,
    url: str,
    *,
    session: Any,
    params: dict[str, Any] | None = None,
    json: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    expected_status: int | Iterable[int] = 200,
    service_name: str = "Service",
    timeout: Any | None = None,
) -> Any:
    method_upper = method.upper()
    if isinstance(expected_status, int):
        expected = {expected_status}
    else:
        expected = set(expected_status)

    if method_upper == "GET":
        request_fn = session.get
    elif method_upper == "POST":
        request_fn = session.post
    else:
        msg = f"{service_name} request error: unsupported method {method_upper}"
        raise ExternalServiceException(msg, {"url": url})

    request_kwargs: dict[str, Any] = {"params": params, "headers": headers}
    if json is not None:
        request_kwargs["json"] = json
    if timeout is not None:
        request_kwargs["timeout"] = timeout

    async with request_fn(url, **request_kwargs) as response:
        if response.status not in expected:
            body = await response.text()
            msg = f"{service_name} returned HTTP {response.status}"
            raise ExternalServiceException(
                msg,
                {
                    "status": response.status,
                    "body": body,
                    "url": str(getattr(response, "url", url)),
                },
            )
        try:
            return await response.json()
        except (aiohttp.ContentTypeError, ValueError) as exc:
            msg = f"{service_name} returned a malformed response"
            raise ExternalServiceException(
                msg,
                {"status": response.status, "url": url},
            ) from exc
