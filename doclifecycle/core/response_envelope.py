from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

_SKIP_PATH_PREFIXES = ("/docs", "/redoc", "/openapi.json")


def _success_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Success"


def _build_success_envelope(data: Any, status_code: int) -> dict[str, Any]:
    return {
        "code": "created" if status_code == 201 else "ok",
        "message": _success_message(status_code),
        "data": data,
        "details": {},
    }


def _is_enveloped(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and "code" in payload
        and "message" in payload
        and ("data" in payload or "details" in payload)
    )


def _copy_headers(source: Response, target: Response) -> Response:
    for key, value in source.headers.items():
        if key.lower() in {"content-length", "content-type"}:
            continue
        target.headers[key] = value
    return target


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    """Wrap successful JSON bodies as ``{code, message, data, details}``."""

    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)

        if not 200 <= response.status_code < 300:
            return response
        if request.url.path.startswith(_SKIP_PATH_PREFIXES):
            return response
        if response.status_code == 204:
            return _copy_headers(
                response, JSONResponse(status_code=200, content=_build_success_envelope(None, 200))
            )
        if not response.headers.get("content-type", "").startswith("application/json"):
            return response

        # call_next hands back a streaming response; drain it to inspect the payload
        raw = b"".join([chunk async for chunk in response.body_iterator])
        try:
            payload = json.loads(raw) if raw else None
        except ValueError:
            return _copy_headers(
                response,
                Response(content=raw, status_code=response.status_code, media_type="application/json"),
            )

        content = payload if _is_enveloped(payload) else _build_success_envelope(
            payload, response.status_code
        )
        return _copy_headers(response, JSONResponse(status_code=response.status_code, content=content))


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
