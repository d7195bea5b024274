from uuid import uuid4

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from doclifecycle.core import context


class RequestContextMiddleware:
    """Bind request and tenant ids to the log context for one request."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(uuid4())
        tenant_id = headers.get(b"x-tenant-id", b"").decode().strip()

        context.set_request_id(request_id)
        if tenant_id:
            context.set_tenant_id(tenant_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                response_headers = list(message.get("headers", []))
                response_headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = response_headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            context.clear_context()
