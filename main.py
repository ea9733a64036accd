# main.py
import logging
import os

from dotenv import load_dotenv

load_dotenv()

from config.logging_config import configure_logging

configure_logging()

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from middleware.rate_limit import limiter
from middleware.request_logging import RequestLoggingMiddleware
from routers.ai_advisor_routes import router as ai_advisor_router
from routers.alerts_routes import router as alerts_router
from routers.internal_routes import router as internal_router
from routers.market_routes import router as market_router
from routers.portfolio_routes import router as portfolio_router
from routers.positions_routes import router as positions_router
from routers.settings_routes import router as settings_router
from routers.transactions_routes import router as transactions_router
from routers.watchlist_routes import router as watchlist_router
from routers.weekly_report_routes import router as weekly_report_router
from services.errors import ExternalServiceError
from utils.responses import error_response

logger = logging.getLogger(__name__)

app = FastAPI(title="Portfolio Dashboard API")

origins = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.state.limiter = limiter


# ---- error envelope ----

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    message = first.get("msg", "Invalid request")
    return error_response(400, f"{field}: {message}" if field else message, details=errors)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(429, f"Rate limit exceeded: {exc.detail}")


@app.exception_handler(ExternalServiceError)
async def external_service_handler(request: Request, exc: ExternalServiceError):
    return error_response(502, str(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return error_response(500, "Internal server error")


# ---- routers ----

app.include_router(positions_router, prefix="/api/positions")
app.include_router(transactions_router, prefix="/api/transactions")
app.include_router(market_router, prefix="/api")
app.include_router(portfolio_router, prefix="/api/portfolio")
app.include_router(ai_advisor_router, prefix="/api/ai-advisor")
app.include_router(weekly_report_router, prefix="/api/weekly-reports")
app.include_router(watchlist_router, prefix="/api/watchlists")
app.include_router(settings_router, prefix="/api/settings")
app.include_router(alerts_router, prefix="/api/alerts")
app.include_router(internal_router, prefix="/api/internal")


@app.get("/health")
def health():
    return {"success": True, "data": {"status": "ok"}}


# db startup
from database import Base, engine
import models  # registers every table on Base.metadata

Base.metadata.create_all(bind=engine)
