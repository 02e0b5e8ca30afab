# NG-HEADER: Nombre de archivo: service.py
# NG-HEADER: Ubicación: services/invoices/service.py
# NG-HEADER: Descripción: Generación idempotente de facturas y desglose para el renderizador.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Facturas: una por pedido.

La pre-verificación evita duplicados en el caso normal; si dos requests corren a
la vez, el UNIQUE de ``facturas.order_id`` hace fallar al perdedor, que hace
rollback y devuelve la factura ganadora.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from fastapi import Request
from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, settings
from db.models import Customer, GuestContact, Invoice, Order, Redemption
from services.audit import audit
from services.errors import ForbiddenError, NotFoundError
from services.loyalty.ledger import STATE_APPLIED, STATE_COMPLETED
from services.notifications.invoices import InvoiceNotifier
from services.pricing.assembler import RewardSnapshot
from .reconstructor import InvoiceBreakdown, OrderAggregates, reconstruct

logger = logging.getLogger("tarbaca.invoices")

STAFF_ROLES = frozenset({"colaborador", "admin"})


def invoice_number(order_id: int, issued_at: datetime) -> str:
    return f"FAC-{issued_at:%Y%m}-{order_id:06d}"


def payment_status_for(order: Order) -> str:
    return "pagado" if order.status == "entregado" else "pendiente"


class InvoiceService:
    def __init__(self, notifier: InvoiceNotifier, cfg: Settings = settings) -> None:
        self.notifier = notifier
        self.settings = cfg

    async def find_redemption_for_order(self, db: AsyncSession, order: Order) -> Optional[Redemption]:
        """Canje vinculado al pedido; si no hay, mejor esfuerzo por cliente + mismo día."""
        linked = (
            await db.execute(
                select(Redemption)
                .where(Redemption.order_id == order.id)
                .order_by(Redemption.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if linked is not None or order.customer_id is None or order.created_at is None:
            return linked
        day = datetime.combine(order.created_at.date(), datetime.min.time())
        next_day = day + timedelta(days=1)
        return (
            await db.execute(
                select(Redemption)
                .where(
                    Redemption.customer_id == order.customer_id,
                    Redemption.state.in_((STATE_APPLIED, STATE_COMPLETED)),
                    Redemption.discount_kind.is_not(None),
                    or_(
                        and_(Redemption.applied_at >= day, Redemption.applied_at < next_day),
                        and_(Redemption.created_at >= day, Redemption.created_at < next_day),
                    ),
                )
                .order_by(Redemption.created_at.desc(), Redemption.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

    def reconstruct(
        self, aggregates: OrderAggregates, redemption: Optional[Redemption]
    ) -> InvoiceBreakdown:
        reward = RewardSnapshot.from_redemption(redemption) if redemption is not None else None
        return reconstruct(
            aggregates,
            reward,
            tax_rate=self.settings.tax_rate,
            delivery_fee=self.settings.delivery_fee,
            epsilon=self.settings.reconciliation_epsilon,
            legacy_heuristic=self.settings.invoice_legacy_heuristic,
        )

    @staticmethod
    def ensure_can_access(order: Order, customer_id: Optional[int], roles: Iterable[str]) -> None:
        """Staff ve todas las facturas; un cliente sólo las de sus pedidos."""
        if STAFF_ROLES.intersection(roles):
            return
        if customer_id is None or order.customer_id != customer_id:
            raise ForbiddenError("No tienes permiso para acceder a la factura de este pedido")

    async def get_order(self, db: AsyncSession, order_id: int) -> Order:
        order = await db.get(Order, order_id)
        if not order:
            raise NotFoundError("Pedido no encontrado")
        return order

    async def list_for_customer(self, db: AsyncSession, customer_id: int) -> list[Invoice]:
        """Facturas de los pedidos del cliente, la más reciente primero."""
        rows = await db.execute(
            select(Invoice)
            .join(Order, Order.id == Invoice.order_id)
            .where(Order.customer_id == customer_id)
            .order_by(Invoice.issued_at.desc(), Invoice.id.desc())
        )
        return list(rows.scalars().all())

    async def _existing(self, db: AsyncSession, order_id: int) -> Optional[Invoice]:
        return (
            await db.execute(select(Invoice).where(Invoice.order_id == order_id))
        ).scalar_one_or_none()

    async def generate(
        self, db: AsyncSession, order_id: int, *, request: Request | None = None
    ) -> tuple[Invoice, bool]:
        """Devuelve ``(factura, creada)``; si ya existía no se vuelve a crear."""
        existing = await self._existing(db, order_id)
        if existing is not None:
            return existing, False
        order = await db.get(Order, order_id)
        if not order:
            raise NotFoundError("Pedido no encontrado")

        redemption = await self.find_redemption_for_order(db, order)
        breakdown = self.reconstruct(OrderAggregates.from_order(order), redemption)
        issued_at = datetime.now()
        invoice = Invoice(
            order_id=order.id,
            invoice_number=invoice_number(order.id, issued_at),
            issued_at=issued_at,
            total_billed=breakdown.total,
            payment_method=order.payment_method,
            payment_status=payment_status_for(order),
            fiscal_details={
                "subtotal": float(order.subtotal or 0),
                "impuestos": float(order.impuestos or 0),
                "descuentos": float(order.descuentos or 0),
            },
        )
        try:
            db.add(invoice)
            await db.flush()
            audit(
                db,
                "invoice_create",
                "facturas",
                invoice.id,
                {
                    "order_id": order.id,
                    "invoice_number": invoice.invoice_number,
                    "total": float(breakdown.total),
                    "used_heuristic": breakdown.used_heuristic,
                },
                customer_id=order.customer_id,
                request=request,
            )
            await db.commit()
        except IntegrityError:
            await db.rollback()
            winner = await self._existing(db, order_id)
            if winner is None:
                raise
            logger.info("Factura del pedido %s creada por otra petición", order_id)
            return winner, False

        logger.info("Factura %s creada para pedido %s", invoice.invoice_number, order.id)
        await self._notify(db, order, invoice, breakdown)
        return invoice, True

    async def _notify(
        self, db: AsyncSession, order: Order, invoice: Invoice, breakdown: InvoiceBreakdown
    ) -> None:
        email, name = await self._contact_for(db, order)
        if not email:
            logger.warning("Pedido %s sin correo de contacto: factura no enviada", order.id)
            return
        payload: dict[str, Any] = {
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "order_id": order.id,
            "email": email,
            "customer_name": name,
            "lines": [{"label": ln.label, "amount": float(ln.amount)} for ln in breakdown.lines],
        }
        try:
            self.notifier.notify_invoice_created(payload)
        except Exception:
            # La factura ya está confirmada; el correo se puede reenviar
            logger.exception("No se pudo encolar el correo de la factura %s", invoice.invoice_number)

    async def _contact_for(self, db: AsyncSession, order: Order) -> tuple[Optional[str], Optional[str]]:
        if order.customer_id is not None:
            customer = await db.get(Customer, order.customer_id)
            if customer is not None:
                return customer.email, customer.name
        guest = await db.get(GuestContact, order.id)
        if guest is not None:
            return guest.email, guest.name
        return None, None

    async def breakdown_for(self, db: AsyncSession, invoice_id: int) -> tuple[Invoice, InvoiceBreakdown]:
        invoice = await db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError("Factura no encontrada")
        order = await db.get(Order, invoice.order_id)
        if not order:
            raise NotFoundError("Pedido no encontrado")
        if invoice.fiscal_details:
            aggregates = OrderAggregates.from_fiscal_details(
                invoice.fiscal_details, order.total, order_id=order.id
            )
        else:
            aggregates = OrderAggregates.from_order(order)
        redemption = await self.find_redemption_for_order(db, order)
        return invoice, self.reconstruct(aggregates, redemption)

    @staticmethod
    def invoice_dict(invoice: Invoice, breakdown: InvoiceBreakdown | None = None) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": invoice.id,
            "order_id": invoice.order_id,
            "invoice_number": invoice.invoice_number,
            "issued_at": invoice.issued_at.isoformat() if invoice.issued_at else None,
            "total_billed": float(invoice.total_billed or 0),
            "payment_method": invoice.payment_method,
            "payment_status": invoice.payment_status,
        }
        if breakdown is not None:
            data["breakdown"] = breakdown.as_dict()
        return data
