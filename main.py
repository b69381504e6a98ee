from __future__ import annotations

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from cashbox.api import cashbox_error_handler, router, unexpected_error_handler
from cashbox.config import settings as app_settings
from cashbox.logging_config import log
from cashbox.services.db_init import init_db
from cashbox.services.errors import CashBoxError

# ------------------------------------------------------------------------------
# App / Middleware
# ------------------------------------------------------------------------------
APP_VERSION = "v0.9"


def create_app(*, init_database: bool = True) -> FastAPI:
    app = FastAPI(title=app_settings.APP_NAME, version=APP_VERSION)
    app.add_middleware(SessionMiddleware, secret_key=app_settings.SECRET_KEY, session_cookie="cashbox_session")
    app.add_exception_handler(CashBoxError, cashbox_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(router)

    @app.get("/status")
    def status_check():
        return {"ok": True, "app": app_settings.APP_NAME, "version": APP_VERSION}

    if init_database:
        @app.on_event("startup")
        def _startup():
            init_db(dev_seed=app_settings.DEFAULT_DEV_SEED)
            log.info("%s %s gestartet", app_settings.APP_NAME, APP_VERSION)

    return app


app = create_app()
