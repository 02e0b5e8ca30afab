# NG-HEADER: Nombre de archivo: 20261019_pricing_loyalty_schema.py
# NG-HEADER: Ubicación: db/migrations/versions/20261019_pricing_loyalty_schema.py
# NG-HEADER: Descripción: Esquema inicial de clientes, promociones, recompensas, pedidos y facturas.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""pricing, loyalty and invoices schema"""

from alembic import op
import sqlalchemy as sa

from db.migrations.util import has_table, index_exists

# revision identifiers, used by Alembic.
revision = "20261019_pricing_loyalty_schema"
down_revision = None
branch_labels = None
depends_on = None

_MONEY = sa.Numeric(12, 2)


def upgrade():
    bind = op.get_bind()

    if not has_table(bind, "clientes"):
        op.create_table(
            "clientes",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("email", sa.String(255), nullable=True),
            sa.Column("phone", sa.String(50), nullable=True),
            sa.Column("accumulated_points", sa.Integer, nullable=False, server_default="0"),
            sa.Column("notifications_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("email", name="ux_clientes_email"),
            sa.CheckConstraint("accumulated_points >= 0", name="ck_clientes_points_nonneg"),
        )

    if not has_table(bind, "promociones"):
        op.create_table(
            "promociones",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("scope", sa.String(16), nullable=False, server_default="general"),
            sa.Column("discount_value", sa.Numeric(6, 2), nullable=False),
            sa.Column("start_date", sa.Date, nullable=True),
            sa.Column("end_date", sa.Date, nullable=True),
            sa.Column("start_time", sa.Time, nullable=True),
            sa.Column("end_time", sa.Time, nullable=True),
            sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("scope IN ('general','producto')", name="ck_promociones_scope"),
            sa.CheckConstraint(
                "discount_value > 0 AND discount_value <= 100", name="ck_promociones_value_range"
            ),
        )

    if not has_table(bind, "promocion_productos"):
        op.create_table(
            "promocion_productos",
            sa.Column(
                "promotion_id",
                sa.Integer,
                sa.ForeignKey("promociones.id", ondelete="CASCADE"),
                primary_key=True,
            ),
            sa.Column("product_id", sa.Integer, primary_key=True),
        )

    if not has_table(bind, "recompensas"):
        op.create_table(
            "recompensas",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("reward_type", sa.String(32), nullable=False),
            sa.Column("value", _MONEY, nullable=True),
            sa.Column("points_cost", sa.Integer, nullable=False, server_default="0"),
            sa.Column("starts_at", sa.DateTime, nullable=True),
            sa.Column("ends_at", sa.DateTime, nullable=True),
            sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint(
                "reward_type IN ('descuento_colones','descuento_porcentaje','descuento','producto','experiencia')",
                name="ck_recompensas_tipo",
            ),
            sa.CheckConstraint("points_cost >= 0", name="ck_recompensas_points_nonneg"),
        )

    if not has_table(bind, "pedidos"):
        op.create_table(
            "pedidos",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column(
                "customer_id",
                sa.Integer,
                sa.ForeignKey("clientes.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("subtotal", _MONEY, nullable=False, server_default="0"),
            sa.Column("impuestos", _MONEY, nullable=False, server_default="0"),
            sa.Column("descuentos", _MONEY, nullable=False, server_default="0"),
            sa.Column("total", _MONEY, nullable=False, server_default="0"),
            sa.Column("status", sa.String(20), nullable=False, server_default="pendiente"),
            sa.Column("payment_method", sa.String(32), nullable=True),
            sa.Column("notes", sa.Text, nullable=True),
            sa.Column("points_awarded", sa.Integer, nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("subtotal >= 0", name="ck_pedidos_subtotal_nonneg"),
            sa.CheckConstraint("total >= 0", name="ck_pedidos_total_nonneg"),
        )
    if not index_exists(bind, "pedidos", "ix_pedidos_cliente"):
        op.create_index("ix_pedidos_cliente", "pedidos", ["customer_id"])

    if not has_table(bind, "detalle_pedido"):
        op.create_table(
            "detalle_pedido",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column(
                "order_id", sa.Integer, sa.ForeignKey("pedidos.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("product_id", sa.Integer, nullable=False),
            sa.Column("quantity", sa.Integer, nullable=False),
            sa.Column("original_price", _MONEY, nullable=False),
            sa.Column("final_price", _MONEY, nullable=False),
            sa.Column("line_subtotal", _MONEY, nullable=False),
        )

    if not has_table(bind, "pedido_invitados"):
        op.create_table(
            "pedido_invitados",
            sa.Column(
                "order_id",
                sa.Integer,
                sa.ForeignKey("pedidos.id", ondelete="CASCADE"),
                primary_key=True,
            ),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("email", sa.String(255), nullable=True),
            sa.Column("phone", sa.String(50), nullable=False),
            sa.Column("address", sa.String(300), nullable=True),
        )

    if not has_table(bind, "programa_lealtad"):
        op.create_table(
            "programa_lealtad",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column(
                "customer_id", sa.Integer, sa.ForeignKey("clientes.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("points_delta", sa.Integer, nullable=False),
            sa.Column("transaction_type", sa.String(16), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column(
                "order_id", sa.Integer, sa.ForeignKey("pedidos.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint(
                "transaction_type IN ('acumulacion','canje')", name="ck_programa_lealtad_tipo"
            ),
        )
    if not index_exists(bind, "programa_lealtad", "ix_programa_lealtad_cliente"):
        op.create_index("ix_programa_lealtad_cliente", "programa_lealtad", ["customer_id"])

    if not has_table(bind, "canjes_puntos"):
        op.create_table(
            "canjes_puntos",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column(
                "customer_id", sa.Integer, sa.ForeignKey("clientes.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column(
                "reward_id", sa.Integer, sa.ForeignKey("recompensas.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("points_spent", sa.Integer, nullable=False),
            sa.Column("reward_name", sa.String(200), nullable=True),
            sa.Column("discount_kind", sa.String(16), nullable=True),
            sa.Column("value_snapshot", _MONEY, nullable=False, server_default="0"),
            sa.Column("state", sa.String(16), nullable=False, server_default="pending"),
            sa.Column(
                "order_id", sa.Integer, sa.ForeignKey("pedidos.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
            sa.Column("applied_at", sa.DateTime, nullable=True),
            sa.CheckConstraint(
                "state IN ('pending','applied','completed')", name="ck_canjes_puntos_state"
            ),
            sa.CheckConstraint(
                "discount_kind IS NULL OR discount_kind IN ('fixed_currency','percentage')",
                name="ck_canjes_puntos_kind",
            ),
        )
    if not index_exists(bind, "canjes_puntos", "ix_canjes_puntos_cliente_estado"):
        op.create_index("ix_canjes_puntos_cliente_estado", "canjes_puntos", ["customer_id", "state"])

    if not has_table(bind, "facturas"):
        op.create_table(
            "facturas",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column(
                "order_id", sa.Integer, sa.ForeignKey("pedidos.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("invoice_number", sa.String(32), nullable=False),
            sa.Column("issued_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
            sa.Column("total_billed", _MONEY, nullable=False),
            sa.Column("payment_method", sa.String(32), nullable=True),
            sa.Column("payment_status", sa.String(16), nullable=False, server_default="pendiente"),
            sa.Column("fiscal_details", sa.JSON, nullable=True),
            sa.UniqueConstraint("order_id", name="ux_facturas_pedido"),
            sa.UniqueConstraint("invoice_number", name="ux_facturas_numero"),
        )

    if not has_table(bind, "audit_log"):
        op.create_table(
            "audit_log",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("action", sa.String(32), nullable=False),
            sa.Column("table", sa.String(64), nullable=False),
            sa.Column("entity_id", sa.Integer, nullable=True),
            sa.Column("metadata", sa.JSON, nullable=True),
            sa.Column("customer_id", sa.Integer, nullable=True),
            sa.Column("ip", sa.String(64), nullable=True),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        )


def downgrade():
    for name in (
        "audit_log",
        "facturas",
        "canjes_puntos",
        "programa_lealtad",
        "pedido_invitados",
        "detalle_pedido",
        "pedidos",
        "recompensas",
        "promocion_productos",
        "promociones",
        "clientes",
    ):
        op.drop_table(name)
