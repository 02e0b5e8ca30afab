# NG-HEADER: Nombre de archivo: api.py
# NG-HEADER: Ubicación: services/api.py
# NG-HEADER: Descripción: Aplicación FastAPI (logging, middleware, handlers de errores y routers).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Aplicación FastAPI principal de pedidos, lealtad y facturación."""

import logging
import os
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi import HTTPException as FastHTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from core.config import settings
from db.session import engine
import db.models  # noqa: F401  registra todas las tablas en la metadata
from services.errors import BusinessError
from services.invoices.service import InvoiceService
from services.loyalty.ledger import RewardLedger
from services.notifications.invoices import DramatiqInvoiceNotifier
from services.orders.checkout import CheckoutService
from .routers import health, invoices, orders, rewards

raw_level = os.getenv("LOG_LEVEL", "INFO") or "INFO"
level_name = raw_level.strip().upper()
if level_name not in logging._nameToLevel:
    level_name = "INFO"
logger = logging.getLogger("tarbaca")
logger.setLevel(level_name)
LOG_DIR = Path(os.getenv("LOG_DIR") or Path(__file__).resolve().parents[1] / "logs")
fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
stream_handler = logging.StreamHandler()
stream_handler.setFormatter(fmt)

file_handler = None
try:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    # delay=True evita abrir el archivo hasta el primer log
    file_handler = RotatingFileHandler(
        str(LOG_DIR / "backend.log"), maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8", delay=True
    )
    file_handler.setFormatter(fmt)
    logger.addHandler(file_handler)
except OSError:
    # Sin permisos: continuar solo con consola
    file_handler = None

logger.addHandler(stream_handler)

handlers = [h for h in (file_handler, stream_handler) if h is not None]
for _name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    logging.getLogger(_name).handlers = handlers
    logging.getLogger(_name).setLevel(level_name)

# `redirect_slashes=False` evita 307 entre `/ruta` y `/ruta/` (rompe preflight CORS)
app = FastAPI(title="Tarbaca Pedidos", redirect_slashes=False)

# Dependencias explícitas de los servicios (sin singletons de módulo)
app.state.ledger = RewardLedger(settings.points_divisor)
app.state.checkout = CheckoutService(
    app.state.ledger, tax_rate=settings.tax_rate, delivery_fee=settings.delivery_fee
)
app.state.invoices = InvoiceService(DramatiqInvoiceNotifier(), settings)

logger.info("DB effective URL: %s", engine.url.render_as_string(hide_password=True))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Registra cada solicitud y captura excepciones con un correlation-id."""
    start = time.perf_counter()
    corr = request.headers.get("x-correlation-id") or request.headers.get("x-request-id")
    if not corr:
        corr = f"req-{int(time.time() * 1000):x}-{os.getpid():x}"
    request.state.correlation_id = corr
    try:
        resp = await call_next(request)
    except (FastHTTPException, StarletteHTTPException):
        raise
    except Exception:
        dur = (time.perf_counter() - start) * 1000
        logger.exception("EXC %s %s cid=%s (%.2fms)", request.method, request.url.path, corr, dur)
        return JSONResponse(
            {"detail": "Ocurrió un error inesperado. Intentá de nuevo más tarde.", "correlation_id": corr},
            status_code=500,
            headers={"X-Correlation-Id": corr},
        )
    dur = (time.perf_counter() - start) * 1000
    resp.headers["X-Correlation-Id"] = corr
    logger.info("%s %s -> %s cid=%s (%.2fms)", request.method, request.url.path, resp.status_code, corr, dur)
    return resp


@app.exception_handler(BusinessError)
async def business_error_handler(request: Request, exc: BusinessError):  # type: ignore[override]
    """Errores de negocio recuperables: el servicio ya hizo rollback."""
    logger.info(
        "Rechazo %s %s: %s (%s)", request.method, request.url.path, exc.detail, exc.code
    )
    return JSONResponse({"detail": exc.detail, "code": exc.code}, status_code=exc.status_code)


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):  # type: ignore[override]
    """Conflicto de integridad genérico sin filtrar información sensible."""
    logger.warning("IntegrityError en %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse({"detail": "conflict", "code": "conflict"}, status_code=409)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
    """Loguea los campos inválidos y mantiene el contrato 422 de FastAPI."""
    flat = [
        {"loc": ".".join(str(p) for p in e.get("loc", [])), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    logger.warning("Validación fallida 422 %s %s: %s", request.method, request.url.path, flat)
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(orders.router)
app.include_router(rewards.router)
app.include_router(invoices.router)
