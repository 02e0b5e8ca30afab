# NG-HEADER: Nombre de archivo: tarbaca.py
# NG-HEADER: Ubicación: cli/tarbaca.py
# NG-HEADER: Descripción: CLI de soporte (puntos de clientes y facturas) usando Typer.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""CLI de operaciones de soporte."""
from __future__ import annotations

import asyncio

import typer

from core.config import settings
from db.models import Customer, Order
from db.session import SessionLocal
from services.invoices.reconstructor import OrderAggregates
from services.invoices.service import InvoiceService
from services.loyalty.ledger import available_points
from services.notifications.invoices import DramatiqInvoiceNotifier, NullInvoiceNotifier

app = typer.Typer(help="Herramientas de línea de comandos de pedidos y lealtad")


@app.command()
def puntos(customer_id: int) -> None:
    """Muestra los puntos acumulados y disponibles de un cliente."""

    async def _run() -> None:
        async with SessionLocal() as db:
            customer = await db.get(Customer, customer_id)
            if not customer:
                typer.echo(f"Cliente {customer_id} no encontrado", err=True)
                raise typer.Exit(code=1)
            available = await available_points(db, customer_id)
            typer.echo(f"Cliente {customer.id} ({customer.name})")
            typer.echo(f"  Acumulados:  {customer.accumulated_points}")
            typer.echo(f"  Disponibles: {available}")

    asyncio.run(_run())


@app.command()
def factura(
    order_id: int,
    dry_run: bool = typer.Option(False, "--dry-run", help="Sólo mostrar el desglose reconstruido"),
    notify: bool = typer.Option(True, help="Encolar el correo de la factura"),
) -> None:
    """Reconstruye el desglose de un pedido y, salvo --dry-run, genera la factura."""
    service = InvoiceService(DramatiqInvoiceNotifier() if notify else NullInvoiceNotifier(), settings)

    async def _run() -> None:
        async with SessionLocal() as db:
            order = await db.get(Order, order_id)
            if not order:
                typer.echo(f"Pedido {order_id} no encontrado", err=True)
                raise typer.Exit(code=1)
            redemption = await service.find_redemption_for_order(db, order)
            breakdown = service.reconstruct(OrderAggregates.from_order(order), redemption)
            for line in breakdown.lines:
                typer.echo(f"{line.label:<32}{float(line.amount):>14,.2f}")
            if breakdown.used_heuristic:
                typer.echo("(descuento de recompensa inferido por heurística)")
            if not breakdown.reconciled:
                typer.echo("(total recalculado: no coincide con el guardado)")
            if dry_run:
                return
            invoice, created = await service.generate(db, order_id)
            estado = "creada" if created else "existente"
            typer.echo(f"Factura {invoice.invoice_number} ({estado})")

    asyncio.run(_run())


@app.command()
def serve(reload: bool = typer.Option(False, help="Recargar al detectar cambios")) -> None:
    """Levanta la API con Uvicorn."""
    from services.runserver import main

    main(reload=reload)


if __name__ == "__main__":
    app()
