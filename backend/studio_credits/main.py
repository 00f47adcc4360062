import logging

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studio_credits.api.endpoints import credits, payment
from studio_credits.core.database import Base, engine
from studio_credits.core.errors import CreditsError, InvalidArgument
from studio_credits.core.settings import settings
from studio_credits.models import credit_account, credit_ledger, payment_order  # noqa: F401


logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Visionary Studio Credits API")

origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def startup() -> None:
    if settings.is_production and not settings.razorpay_webhook_secret:
        raise RuntimeError("RAZORPAY_WEBHOOK_SECRET must be set in production")
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)


@app.exception_handler(CreditsError)
async def credits_error_handler(request: Request, exc: CreditsError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request.failed path=%s code=%s detail=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # payment endpoints answer malformed bodies with 400 invalid_argument
    if not request.url.path.startswith("/api/payment/"):
        return await request_validation_exception_handler(request, exc)
    fields = sorted({".".join(str(part) for part in err.get("loc", ())[1:]) for err in exc.errors()} - {""})
    error = InvalidArgument("Invalid request body")
    logger.info("request.invalid path=%s fields=%s", request.url.path, fields)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


app.include_router(credits.router, prefix="/api", tags=["credits"])
app.include_router(payment.router, prefix="/api", tags=["payment"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
