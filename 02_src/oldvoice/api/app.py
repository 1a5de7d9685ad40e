"""FastAPI application setup."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..app import Application
from .routes import admin, control, messaging, telegram, twilio_sms, vapi


# Global application instance
_app: Application | None = None


def get_app() -> Application:
    """Get the global application instance."""
    global _app
    if not _app:
        _app = Application()
    return _app


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan."""
    application: Application = app.state.application
    await application.start()
    yield
    await application.stop()


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    application = application or get_app()

    fastapi_app = FastAPI(
        title="OldVoice API",
        description="Conversational setup for recorded storytelling calls",
        version="0.1.0",
        lifespan=lifespan,
    )
    fastapi_app.state.application = application

    # Webhooks are server-to-server; CORS only matters for a browser console.
    if application.settings.cors_origins:
        fastapi_app.add_middleware(
            CORSMiddleware,
            allow_origins=application.settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    fastapi_app.include_router(messaging.create_messaging_router(application))
    fastapi_app.include_router(twilio_sms.create_twilio_router(application))
    fastapi_app.include_router(telegram.create_telegram_router(application))
    fastapi_app.include_router(vapi.create_vapi_router(application))
    fastapi_app.include_router(admin.create_admin_router(application))
    fastapi_app.include_router(control.create_control_router(application))

    return fastapi_app
