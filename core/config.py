# NG-HEADER: Nombre de archivo: config.py
# NG-HEADER: Ubicación: core/config.py
# NG-HEADER: Descripción: Configuración central (DB, precios, correo, jobs).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Configuración central del backend de pedidos."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from dotenv import load_dotenv

# Carga automática de variables definidas en .env
load_dotenv()

_TRUE_VALUES = {"1", "true", "yes", "on"}


def env_flag(name: str, default: str = "false") -> bool:
    """Lee un booleano de entorno con una única convención."""
    return (os.getenv(name, default) or "").strip().lower() in _TRUE_VALUES


def _expand_local(origins: list[str]) -> list[str]:
    """Duplica ``localhost``/``127.0.0.1`` para evitar errores de CORS en desarrollo."""
    out: set[str] = set()
    for o in origins:
        o = o.strip()
        if not o:
            continue
        out.add(o)
        if o.startswith("http://localhost:"):
            out.add(o.replace("http://localhost:", "http://127.0.0.1:"))
        if o.startswith("http://127.0.0.1:"):
            out.add(o.replace("http://127.0.0.1:", "http://localhost:"))
    return list(out)


@dataclass
class Settings:
    """Parámetros de configuración leídos de variables de entorno."""

    env: str = os.getenv("ENV", "dev")
    db_url: str = os.getenv("DB_URL", "")
    # Soporte para componer la URL si no se pasa DB_URL directamente
    db_host: str = os.getenv("DB_HOST", "localhost")
    db_port: str = os.getenv("DB_PORT", "5432")
    db_name: str = os.getenv("DB_NAME", "tarbaca")
    db_user: str = os.getenv("DB_USER", "")
    db_pass: str = os.getenv("DB_PASS", "")

    # Precios: IVA sobre el subtotal luego de recompensas y costo fijo de entrega
    tax_rate: Decimal = Decimal(os.getenv("TAX_RATE", "0.13"))
    delivery_fee: Decimal = Decimal(os.getenv("DELIVERY_FEE", "1500"))
    # Tolerancia (en colones) al conciliar el total reconstruido de una factura
    reconciliation_epsilon: Decimal = Decimal(os.getenv("RECONCILIATION_EPSILON", "1"))
    # Un punto de lealtad por cada POINTS_DIVISOR colones de subtotal
    points_divisor: int = int(os.getenv("POINTS_DIVISOR", "100"))
    invoice_legacy_heuristic: bool = env_flag("INVOICE_LEGACY_HEURISTIC", "true")

    # Correo de facturas (transporte SMTP usado por el job)
    smtp_host: str | None = os.getenv("SMTP_HOST") or None
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_user: str | None = os.getenv("SMTP_USER") or None
    smtp_pass: str | None = os.getenv("SMTP_PASS") or None
    smtp_secure: bool = env_flag("SMTP_SECURE")
    mail_from: str = os.getenv("MAIL_FROM", "no-reply@sunsets.local")
    mail_bcc: str | None = os.getenv("MAIL_BCC") or None

    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    run_inline_jobs: bool = env_flag("RUN_INLINE_JOBS", "0")
    allowed_origins: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.db_url:
            # Intentar construir desde variables sueltas
            if self.db_pass:
                from urllib.parse import quote_plus as _qp
                pw_enc = _qp(self.db_pass)
            else:
                pw_enc = ""
            if self.db_user and pw_enc:
                candidate = f"postgresql+psycopg://{self.db_user}:{pw_enc}@{self.db_host}:{self.db_port}/{self.db_name}"
            elif self.db_user:
                candidate = f"postgresql+psycopg://{self.db_user}@{self.db_host}:{self.db_port}/{self.db_name}"
            else:
                candidate = ""
            if candidate:
                self.db_url = candidate
        if not self.db_url:
            if self.env == "dev":
                # Fallback amigable para no bloquear el arranque local sin Postgres
                self.db_url = "sqlite+aiosqlite:///./dev.db"
            else:
                raise RuntimeError("DB_URL debe definirse en el entorno")

        if self.tax_rate <= 0 or self.tax_rate >= 1:
            raise RuntimeError(f"TAX_RATE fuera de rango: {self.tax_rate}")
        if self.delivery_fee < 0:
            raise RuntimeError("DELIVERY_FEE no puede ser negativo")
        if self.points_divisor <= 0:
            raise RuntimeError("POINTS_DIVISOR debe ser mayor a 0")

        raw = os.getenv("ALLOWED_ORIGINS", "").split(",")
        origins = [o.strip() for o in raw if o.strip()]
        if self.env == "dev":
            if not origins:
                origins = ["http://localhost:5173"]
            origins = _expand_local(origins)
        elif not origins:
            raise RuntimeError(
                "En producción, ALLOWED_ORIGINS debe definir al menos un origen"
            )
        self.allowed_origins = origins


settings = Settings()
