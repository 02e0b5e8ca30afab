# NG-HEADER: Nombre de archivo: invoices.py
# NG-HEADER: Ubicación: services/routers/invoices.py
# NG-HEADER: Descripción: Generación y consulta de facturas (staff o dueño del pedido).
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import get_session
from services.auth import SessionData, current_session, require_customer
from services.invoices.service import STAFF_ROLES, InvoiceService

router = APIRouter(prefix="/facturas", tags=["facturas"])


def get_invoice_service(request: Request) -> InvoiceService:
    return request.app.state.invoices


async def require_viewer(sess: SessionData = Depends(current_session)) -> SessionData:
    """Staff o cliente autenticado; la pertenencia del pedido se valida después."""
    if sess.customer_id is None and not STAFF_ROLES.intersection(sess.roles):
        raise HTTPException(status_code=401, detail="Debes iniciar sesión")
    return sess


@router.get("/cliente")
async def list_my_invoices(
    db: AsyncSession = Depends(get_session),
    sess: SessionData = Depends(require_customer),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    rows = await invoices.list_for_customer(db, sess.customer_id)
    return [invoices.invoice_dict(inv) for inv in rows]


@router.post("/pedido/{order_id}")
async def generate_invoice(
    order_id: int,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
    sess: SessionData = Depends(require_viewer),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    """Idempotente: si el pedido ya tiene factura se devuelve la existente (200)."""
    order = await invoices.get_order(db, order_id)
    invoices.ensure_can_access(order, sess.customer_id, sess.roles)
    invoice, created = await invoices.generate(db, order_id, request=request)
    _, breakdown = await invoices.breakdown_for(db, invoice.id)
    response.status_code = 201 if created else 200
    data = invoices.invoice_dict(invoice, breakdown)
    data["created"] = created
    return data


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_session),
    sess: SessionData = Depends(require_viewer),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    invoice, breakdown = await invoices.breakdown_for(db, invoice_id)
    order = await invoices.get_order(db, invoice.order_id)
    invoices.ensure_can_access(order, sess.customer_id, sess.roles)
    return invoices.invoice_dict(invoice, breakdown)
