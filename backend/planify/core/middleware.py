"""Request id and access logging middleware."""
from __future__ import annotations

import logging
import re
from time import perf_counter
from typing import Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from planify.core.context import parse_user_id, request_id_ctx_var, user_id_ctx_var

REQUEST_ID_HEADER = "X-Request-Id"
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")
_USER_PATH = re.compile(r"/users/([0-9a-fA-F-]{32,36})(?:/|$)")

access_logger = logging.getLogger("planify.access")


def resolve_request_id(header_value: str | None) -> str:
    """Reuse a caller-supplied id when it is safe to log, otherwise mint one."""
    if header_value and _VALID_REQUEST_ID.match(header_value):
        return header_value
    return str(uuid4())


def request_user_id(request: Request) -> str | None:
    match = _USER_PATH.search(request.url.path)
    if match:
        return parse_user_id(match.group(1))
    return parse_user_id(request.query_params.get("user_id"))


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind request and user ids for logging, echo the request id and log each request."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:  # type: ignore[override]
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        request_token = request_id_ctx_var.set(request_id)
        user_token = user_id_ctx_var.set(request_user_id(request))
        start = perf_counter()

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            access_logger.info(
                "%s %s -> %s in %.1fms",
                request.method,
                request.url.path,
                response.status_code,
                (perf_counter() - start) * 1000,
            )
            return response
        finally:
            user_id_ctx_var.reset(user_token)
            request_id_ctx_var.reset(request_token)
