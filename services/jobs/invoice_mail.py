# NG-HEADER: Nombre de archivo: invoice_mail.py
# NG-HEADER: Ubicación: services/jobs/invoice_mail.py
# NG-HEADER: Descripción: Actor que envía la factura por correo (SMTP) luego de generarla.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any

import dramatiq

from core.config import Settings, settings
from services.jobs import broker  # noqa: F401

logger = logging.getLogger("tarbaca.jobs")


def build_invoice_message(payload: dict[str, Any], cfg: Settings = settings) -> EmailMessage:
    """Mensaje de texto plano con el desglose de la factura."""
    msg = EmailMessage()
    number = payload.get("invoice_number")
    msg["Subject"] = f"Factura {number}"
    msg["From"] = cfg.mail_from
    msg["To"] = payload["email"]
    if cfg.mail_bcc:
        msg["Bcc"] = cfg.mail_bcc
    name = payload.get("customer_name")
    rows = [f"Hola {name}," if name else "Hola,", "", f"Factura {number}"]
    rows.append(f"Pedido #{payload.get('order_id')}")
    rows.append("")
    for line in payload.get("lines") or []:
        rows.append(f"{line['label']}: {float(line['amount']):,.2f}")
    rows.append("")
    rows.append("¡Gracias por tu compra!")
    msg.set_content("\n".join(rows))
    return msg


def deliver(msg: EmailMessage, cfg: Settings = settings) -> bool:
    if not cfg.smtp_host:
        logger.warning("SMTP no configurado: se omite el envío de %s", msg["Subject"])
        return False
    if cfg.smtp_secure:
        client: smtplib.SMTP = smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, timeout=20)
    else:
        client = smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=20)
    with client:
        if not cfg.smtp_secure:
            client.ehlo()
            if client.has_extn("starttls"):
                client.starttls()
        if cfg.smtp_user:
            client.login(cfg.smtp_user, cfg.smtp_pass or "")
        client.send_message(msg)
    logger.info("Factura enviada a %s (%s)", msg["To"], msg["Subject"])
    return True


@dramatiq.actor(max_retries=3)
def send_invoice_email(payload: dict[str, Any]) -> None:
    if not payload.get("email"):
        logger.warning("Factura %s sin correo de contacto", payload.get("invoice_number"))
        return
    deliver(build_invoice_message(payload))
