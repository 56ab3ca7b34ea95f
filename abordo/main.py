import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .errors import register_error_handlers
from .logging import setup_logging, RequestIdMiddleware, structlog
from .auth.router import router as auth_router
from .routes.vehicles import router as vehicles_router
from .routes.notifications import router as notifications_router
from .routes.costs import router as costs_router
from .services.mailer import get_transport, is_configured
from .services.scheduler import ReminderScheduler


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    register_error_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(vehicles_router)
    app.include_router(notifications_router)
    app.include_router(costs_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok", "app": settings.app_name}

    @app.on_event("startup")
    def _startup():
        log = structlog.get_logger()
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            from .models import models  # noqa: F401  registers tables on Base
            Base.metadata.create_all(bind=engine)
        app.state.reminder_scheduler = None
        if settings.enable_email and is_configured(settings):
            scheduler = ReminderScheduler(get_transport(settings))
            scheduler.start()
            app.state.reminder_scheduler = scheduler
            log.info("reminder_scheduler_started", hour=scheduler.hour, minute=scheduler.minute)
        else:
            log.info("reminder_scheduler_disabled", provider=settings.email_provider)

    @app.on_event("shutdown")
    def _shutdown():
        scheduler = getattr(app.state, "reminder_scheduler", None)
        if scheduler:
            scheduler.stop()

    return app


app = create_app()
