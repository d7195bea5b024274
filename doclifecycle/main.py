from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from doclifecycle.api.v1 import api_router
from doclifecycle.core.errors import register_exception_handlers
from doclifecycle.core.health import APP_VERSION
from doclifecycle.core.limiter import limiter
from doclifecycle.core.logging import configure_logging
from doclifecycle.core.response_envelope import register_response_envelope
from doclifecycle.core.settings import settings
from doclifecycle.events import register_event_handlers
from doclifecycle.middlewares.request_context import RequestContextMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Document Lifecycle Service", version=APP_VERSION)
    register_exception_handlers(app)
    register_response_envelope(app)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
