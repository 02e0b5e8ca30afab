# NG-HEADER: Nombre de archivo: models.py
# NG-HEADER: Ubicación: db/models.py
# NG-HEADER: Descripción: Modelos ORM de clientes, promociones, recompensas, pedidos y facturas.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Modelos principales de la base de datos."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Time,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .types import Flag


# --- Clientes ---

class Customer(Base):
    __tablename__ = "clientes"
    __table_args__ = (
        UniqueConstraint("email", name="ux_clientes_email"),
        CheckConstraint("accumulated_points >= 0", name="ck_clientes_points_nonneg"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # Contador monótono (define el nivel del cliente); los canjes nunca lo restan
    accumulated_points: Mapped[int] = mapped_column(Integer, default=0)
    notifications_enabled: Mapped[bool] = mapped_column(Flag, default=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.now, onupdate=datetime.now)

    orders: Mapped[list["Order"]] = relationship(back_populates="customer")
    redemptions: Mapped[list["Redemption"]] = relationship(back_populates="customer")


# --- Promociones ---

promotion_products = Table(
    "promocion_productos",
    Base.metadata,
    Column("promotion_id", ForeignKey("promociones.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", Integer, primary_key=True),
)


class Promotion(Base):
    __tablename__ = "promociones"
    __table_args__ = (
        CheckConstraint("scope IN ('general','producto')", name="ck_promociones_scope"),
        CheckConstraint(
            "discount_value > 0 AND discount_value <= 100", name="ck_promociones_value_range"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scope: Mapped[str] = mapped_column(String(16), default="general")
    # Porcentaje en "unidades de por ciento" (10 = 10%)
    discount_value: Mapped[Numeric] = mapped_column(Numeric(6, 2))
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    active: Mapped[bool] = mapped_column(Flag, default=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)


# --- Recompensas y canjes ---

class Reward(Base):
    __tablename__ = "recompensas"
    __table_args__ = (
        CheckConstraint(
            "reward_type IN ('descuento_colones','descuento_porcentaje','descuento','producto','experiencia')",
            name="ck_recompensas_tipo",
        ),
        CheckConstraint("points_cost >= 0", name="ck_recompensas_points_nonneg"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reward_type: Mapped[str] = mapped_column(String(32))
    value: Mapped[Optional[Numeric]] = mapped_column(Numeric(12, 2), nullable=True)
    points_cost: Mapped[int] = mapped_column(Integer, default=0)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    active: Mapped[bool] = mapped_column(Flag, default=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)


class PointsLedgerEntry(Base):
    """Movimiento de puntos (sólo inserción, nunca se edita ni borra)."""

    __tablename__ = "programa_lealtad"
    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('acumulacion','canje')", name="ck_programa_lealtad_tipo"
        ),
        Index("ix_programa_lealtad_cliente", "customer_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("clientes.id", ondelete="CASCADE"))
    points_delta: Mapped[int] = mapped_column(Integer)
    transaction_type: Mapped[str] = mapped_column(String(16))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("pedidos.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)


class Redemption(Base):
    __tablename__ = "canjes_puntos"
    __table_args__ = (
        CheckConstraint(
            "state IN ('pending','applied','completed')", name="ck_canjes_puntos_state"
        ),
        CheckConstraint(
            "discount_kind IS NULL OR discount_kind IN ('fixed_currency','percentage')",
            name="ck_canjes_puntos_kind",
        ),
        Index("ix_canjes_puntos_cliente_estado", "customer_id", "state"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("clientes.id", ondelete="CASCADE"))
    reward_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recompensas.id", ondelete="SET NULL"), nullable=True
    )
    points_spent: Mapped[int] = mapped_column(Integer)
    reward_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    # Snapshot del descuento al momento del canje
    discount_kind: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    value_snapshot: Mapped[Numeric] = mapped_column(Numeric(12, 2), default=0)
    state: Mapped[str] = mapped_column(String(16), default="pending")
    order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("pedidos.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    customer: Mapped["Customer"] = relationship(back_populates="redemptions")
    reward: Mapped[Optional["Reward"]] = relationship()


# --- Pedidos ---

class Order(Base):
    __tablename__ = "pedidos"
    __table_args__ = (
        CheckConstraint("subtotal >= 0", name="ck_pedidos_subtotal_nonneg"),
        CheckConstraint("total >= 0", name="ck_pedidos_total_nonneg"),
        Index("ix_pedidos_cliente", "customer_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    customer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("clientes.id", ondelete="SET NULL"), nullable=True
    )
    # Agregados persistidos: el descuento de promociones NO se guarda por separado
    subtotal: Mapped[Numeric] = mapped_column(Numeric(12, 2), default=0)
    impuestos: Mapped[Numeric] = mapped_column(Numeric(12, 2), default=0)
    descuentos: Mapped[Numeric] = mapped_column(Numeric(12, 2), default=0)
    total: Mapped[Numeric] = mapped_column(Numeric(12, 2), default=0)
    status: Mapped[str] = mapped_column(String(20), default="pendiente")
    payment_method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    points_awarded: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)

    customer: Mapped[Optional["Customer"]] = relationship(back_populates="orders")
    lines: Mapped[list["OrderLine"]] = relationship(back_populates="order")
    guest: Mapped[Optional["GuestContact"]] = relationship(back_populates="order", uselist=False)


class OrderLine(Base):
    __tablename__ = "detalle_pedido"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("pedidos.id", ondelete="CASCADE"))
    # El catálogo vive fuera de este servicio: sólo se guarda el id de producto
    product_id: Mapped[int] = mapped_column(Integer)
    quantity: Mapped[int] = mapped_column(Integer)
    original_price: Mapped[Numeric] = mapped_column(Numeric(12, 2))
    final_price: Mapped[Numeric] = mapped_column(Numeric(12, 2))
    line_subtotal: Mapped[Numeric] = mapped_column(Numeric(12, 2))

    order: Mapped["Order"] = relationship(back_populates="lines")


class GuestContact(Base):
    """Datos de contacto de un pedido sin cliente registrado."""

    __tablename__ = "pedido_invitados"

    order_id: Mapped[int] = mapped_column(
        ForeignKey("pedidos.id", ondelete="CASCADE"), primary_key=True
    )
    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[str] = mapped_column(String(50))
    address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)

    order: Mapped["Order"] = relationship(back_populates="guest")


# --- Facturas ---

class Invoice(Base):
    __tablename__ = "facturas"
    __table_args__ = (
        UniqueConstraint("order_id", name="ux_facturas_pedido"),
        UniqueConstraint("invoice_number", name="ux_facturas_numero"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("pedidos.id", ondelete="CASCADE"))
    invoice_number: Mapped[str] = mapped_column(String(32))
    issued_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    total_billed: Mapped[Numeric] = mapped_column(Numeric(12, 2))
    payment_method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(16), default="pendiente")
    # Snapshot crudo {subtotal, impuestos, descuentos} al momento de emitir
    fiscal_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    order: Mapped["Order"] = relationship()


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    action: Mapped[str] = mapped_column(String(32))
    table: Mapped[str] = mapped_column(String(64))
    entity_id: Mapped[Optional[int]] = mapped_column(Integer)
    # Nota: 'metadata' es un nombre reservado en SQLAlchemy; usamos 'meta' como atributo
    # pero conservamos el nombre de columna 'metadata' a nivel de base de datos.
    meta: Mapped[Optional[dict]] = mapped_column(JSON, name="metadata")
    customer_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
