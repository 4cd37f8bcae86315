import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from starlette.middleware.sessions import SessionMiddleware

import accounts
import admin
import profiles
from config import Settings
from database import ensure_indexes, get_database
from errors import PortfolioError
from mailer import Mailer
from oauth import init_oauth
from sessions import build_strategy

log = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PortfolioError)
    async def portfolio_error(request: Request, exc: PortfolioError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    mailer: Optional[Mailer] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    db = database if database is not None else get_database(settings)
    clock = clock or datetime.utcnow

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_indexes(db)
        yield

    app = FastAPI(title="MyPortfolify API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or [settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    # Holds the OAuth state between /auth/google and its callback.
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.jwt_secret.get_secret_value(),
        https_only=settings.session_cookie_secure,
    )

    strategy = build_strategy(settings, db, clock)
    store = profiles.ProfileStore(db, clock)
    app.state.settings = settings
    app.state.db = db
    app.state.strategy = strategy
    app.state.oauth = init_oauth(settings)
    app.state.accounts = accounts.AccountService(db, settings, mailer or Mailer(settings), clock)
    app.state.profiles = store
    app.state.admin = admin.AdminController(db, settings, store, strategy, clock)

    register_error_handlers(app)

    @app.get("/")
    def read_root():
        return {"message": "MyPortfolify API running"}

    @app.get("/test")
    def test_database(request: Request):
        status = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": "❌ Not Set" if not settings.database_url else "✅ Set",
            "database_name": "❌ Not Set" if not settings.database_name else "✅ Set",
            "session_strategy": request.app.state.strategy.name,
            "collections": []
        }
        try:
            cols = request.app.state.db.list_collection_names()
            status["database"] = "✅ Connected"
            status["collections"] = cols
        except Exception as e:
            status["database"] = f"❌ Error: {str(e)[:80]}"
        return status

    app.include_router(accounts.router)
    app.include_router(profiles.router)
    app.include_router(admin.router)
    return app


app = create_app()
