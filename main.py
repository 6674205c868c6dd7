import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database

import auth
import reviews
import tours
import users
from config import Settings, get_settings
from database import db, ensure_indexes, get_db
from email_service import Mailer
from errors import register_error_handlers
from rate_limit import RateLimiter, rate_limit_middleware

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes(db)
    yield


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=logging.INFO if settings.is_production else logging.DEBUG,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # App and CORS
    app = FastAPI(title="Natours API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.rate_limiter = RateLimiter(settings.rate_limit_max, settings.rate_limit_window)
    app.state.mailer = Mailer(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(rate_limit_middleware)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        if not settings.is_production:
            logger.info(
                "%s %s %s %.1fms",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
        return response

    register_error_handlers(app)

    app.include_router(tours.router, prefix="/api/v1/tours", tags=["tours"])
    app.include_router(reviews.nested_router, prefix="/api/v1/tours/{tourId}/reviews", tags=["reviews"])
    app.include_router(auth.router, prefix="/api/v1/users", tags=["auth"])
    app.include_router(users.router, prefix="/api/v1/users", tags=["users"])
    app.include_router(reviews.router, prefix="/api/v1/reviews", tags=["reviews"])

    @app.get("/")
    def root():
        return {"message": "Natours API running"}

    @app.get("/test")
    def test_database(database: Database = Depends(get_db)):
        try:
            collections = database.list_collection_names()
            return {"backend": "ok", "database": "ok", "collections": collections}
        except Exception as e:
            return {"backend": "ok", "database": f"error: {e}"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
