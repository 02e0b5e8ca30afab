# NG-HEADER: Nombre de archivo: invoices.py
# NG-HEADER: Ubicación: services/notifications/invoices.py
# NG-HEADER: Descripción: Notificadores de factura creada (cola Dramatiq o nulo).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Se inyectan en ``InvoiceService``; no hay cliente de correo global."""
from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("tarbaca.invoices")


class InvoiceNotifier:
    def notify_invoice_created(self, payload: dict[str, Any]) -> None:
        raise NotImplementedError


class DramatiqInvoiceNotifier(InvoiceNotifier):
    """Encola el envío del correo; la API no espera al SMTP."""

    def notify_invoice_created(self, payload: dict[str, Any]) -> None:
        from services.jobs.invoice_mail import send_invoice_email

        send_invoice_email.send(payload)
        logger.debug("Correo de factura %s encolado", payload.get("invoice_number"))


class NullInvoiceNotifier(InvoiceNotifier):
    def notify_invoice_created(self, payload: dict[str, Any]) -> None:
        logger.debug("Notificación de factura %s omitida", payload.get("invoice_number"))
