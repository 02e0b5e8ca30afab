# NG-HEADER: Nombre de archivo: test_invoice_mail.py
# NG-HEADER: Ubicación: tests/test_invoice_mail.py
# NG-HEADER: Descripción: Tests del correo de facturas (mensaje, SMTP y encolado).
# NG-HEADER: Lineamientos: Ver AGENTS.md
from dataclasses import replace

from core.config import settings
from services.jobs import broker
from services.jobs import invoice_mail
from services.notifications.invoices import DramatiqInvoiceNotifier

PAYLOAD = {
    "invoice_id": 1,
    "invoice_number": "FAC-202603-000007",
    "order_id": 7,
    "email": "ana@example.com",
    "customer_name": "Ana Mora",
    "lines": [
        {"label": "Subtotal", "amount": 10000.0},
        {"label": "Descuento por promociones", "amount": -1000.0},
        {"label": "Total", "amount": 8845.0},
    ],
}


class FakeSMTP:
    instances: list["FakeSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.sent = []
        self.logged_in = None
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        pass

    def has_extn(self, name):
        return name == "starttls"

    def starttls(self):
        self.tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, msg):
        self.sent.append(msg)


def test_message_contains_greeting_and_lines():
    cfg = replace(settings, mail_from="facturas@tarbaca.test", mail_bcc="copia@tarbaca.test")
    msg = invoice_mail.build_invoice_message(PAYLOAD, cfg)
    body = msg.get_content()
    assert msg["Subject"] == "Factura FAC-202603-000007"
    assert msg["To"] == "ana@example.com"
    assert msg["Bcc"] == "copia@tarbaca.test"
    assert body.startswith("Hola Ana Mora,")
    assert "Descuento por promociones: -1,000.00" in body
    assert "Total: 8,845.00" in body


def test_deliver_skips_without_smtp_host(caplog):
    cfg = replace(settings, smtp_host=None)
    msg = invoice_mail.build_invoice_message(PAYLOAD, cfg)
    assert invoice_mail.deliver(msg, cfg) is False
    assert "SMTP no configurado" in caplog.text


def test_deliver_uses_starttls_and_login(monkeypatch):
    FakeSMTP.instances.clear()
    monkeypatch.setattr(invoice_mail.smtplib, "SMTP", FakeSMTP)
    cfg = replace(settings, smtp_host="smtp.test", smtp_port=587, smtp_user="u", smtp_pass="p", smtp_secure=False)
    msg = invoice_mail.build_invoice_message(PAYLOAD, cfg)
    assert invoice_mail.deliver(msg, cfg) is True
    client = FakeSMTP.instances[0]
    assert client.host == "smtp.test"
    assert client.logged_in == ("u", "p")
    assert client.sent == [msg]


def test_dramatiq_notifier_enqueues_on_stub_broker():
    broker.flush_all()
    DramatiqInvoiceNotifier().notify_invoice_created(PAYLOAD)
    assert broker.queues["default"].qsize() == 1
    broker.flush_all()
