import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from database import init_db
from errors import LendingError
from api.applications import router as applications_router
from api.contacts import router as contacts_router
from api.esign import router as esign_router
from api.payments import router as payments_router
from api.verification import router as verification_router
from api.webhooks import router as webhooks_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(
    title=settings.app_name,
    description="Loan lifecycle orchestration: verification, eSign, mandates, collections and reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LendingError)
async def lending_error_handler(request: Request, exc: LendingError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(applications_router)
app.include_router(verification_router)
app.include_router(esign_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
app.include_router(contacts_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
