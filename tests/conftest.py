# NG-HEADER: Nombre de archivo: conftest.py
# NG-HEADER: Ubicación: tests/conftest.py
# NG-HEADER: Descripción: Fixtures y configuración compartida de Pytest.
# NG-HEADER: Lineamientos: Ver AGENTS.md
import os
import sys
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import AsyncGenerator, Any

import pytest
import pytest_asyncio

# Asegurar path del proyecto antes de importar módulos internos
project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.append(str(project_root))

# -------- Entorno base de tests --------
os.environ["DB_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENV"] = "dev"
os.environ["RUN_INLINE_JOBS"] = "1"
os.environ.setdefault("TAX_RATE", "0.13")
os.environ.setdefault("DELIVERY_FEE", "1500")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import db.session as _session  # noqa: E402
import db.base as _base  # noqa: E402
import db.models  # noqa: F401,E402
from db.models import Customer, Promotion, Reward, promotion_products  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

Base = _base.Base


@pytest_asyncio.fixture(scope="function", autouse=True)
async def db_session():
    """DB limpia por test (SQLite memoria compartida). Retorna sesión para usar en fixtures/tests."""
    engine = _session.engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with _session.SessionLocal() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


class RecordingNotifier:
    """Notificador de prueba: guarda los payloads en memoria."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    def notify_invoice_created(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def ledger():
    from services.loyalty.ledger import RewardLedger

    return RewardLedger(points_divisor=100)


@pytest.fixture()
def checkout(ledger):
    from services.orders.checkout import CheckoutService

    return CheckoutService(ledger, tax_rate=Decimal("0.13"), delivery_fee=Decimal("1500"))


@pytest.fixture()
def invoice_service(notifier):
    from core.config import settings
    from services.invoices.service import InvoiceService

    return InvoiceService(notifier, settings)


# -------- Factories de datos --------
@pytest.fixture()
def make_customer(db_session):
    async def _make(*, name: str = "Ana Mora", email: str | None = "ana@example.com", points: int = 0) -> Customer:
        c = Customer(name=name, email=email, phone="8888-0000", accumulated_points=points)
        db_session.add(c)
        await db_session.commit()
        return c

    return _make


@pytest.fixture()
def make_reward(db_session):
    async def _make(
        *,
        name: str = "Descuento 2500",
        reward_type: str = "descuento_colones",
        value: Decimal | int | None = Decimal("2500"),
        points_cost: int = 500,
        active: bool = True,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
    ) -> Reward:
        r = Reward(
            name=name,
            reward_type=reward_type,
            value=value,
            points_cost=points_cost,
            active=active,
            starts_at=starts_at,
            ends_at=ends_at,
        )
        db_session.add(r)
        await db_session.commit()
        return r

    return _make


@pytest.fixture()
def make_promotion(db_session):
    async def _make(
        *,
        name: str = "Happy hour",
        scope: str = "general",
        value: Decimal | int = 10,
        product_ids: list[int] | None = None,
        active: bool = True,
        start_date: date | None = None,
        end_date: date | None = None,
        start_time: time | None = None,
        end_time: time | None = None,
    ) -> Promotion:
        p = Promotion(
            name=name,
            scope=scope,
            discount_value=value,
            active=active,
            start_date=start_date,
            end_date=end_date,
            start_time=start_time,
            end_time=end_time,
        )
        db_session.add(p)
        await db_session.flush()
        for pid in product_ids or []:
            await db_session.execute(promotion_products.insert().values(promotion_id=p.id, product_id=pid))
        await db_session.commit()
        return p

    return _make


# -------- Clientes HTTP asíncronos para tests --------
@pytest_asyncio.fixture
async def client(notifier) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP async con servicios limpios y notificador en memoria."""
    from core.config import settings
    from services.api import app
    from services.invoices.service import InvoiceService
    from services.loyalty.ledger import RewardLedger
    from services.orders.checkout import CheckoutService

    app.state.ledger = RewardLedger(100)
    app.state.checkout = CheckoutService(
        app.state.ledger, tax_rate=Decimal("0.13"), delivery_fee=Decimal("1500")
    )
    app.state.invoices = InvoiceService(notifier, settings)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
