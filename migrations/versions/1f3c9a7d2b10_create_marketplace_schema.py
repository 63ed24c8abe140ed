from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "1f3c9a7d2b10"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated=False):
    columns = [sa.Column("created_at", sa.DateTime(), nullable=False)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(), nullable=False))
    return columns


ORDER_STATUS = sa.Enum(
    "PENDING_PAYMENT", "PAID", "PROCESSING", "SHIPPED", "DELIVERED",
    "CANCELLED", name="orderstatus")
BOOKING_STATUS = sa.Enum(
    "PENDING_CONFIRMATION", "CONFIRMED", "PENDING_PAYMENT", "PAID",
    "ONGOING", "COMPLETED", "CANCELLED", name="bookingstatus")
PAYMENT_METHOD = sa.Enum("BANK_TRANSFER", "IPG", name="paymentmethod")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("username", sa.String(length=100), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column(
            "role",
            sa.Enum("BUYER", "SELLER", "ADMIN", name="userrole"),
            nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_email", ["email"], unique=True)
        batch_op.create_index("ix_users_username", ["username"], unique=True)

    op.create_table(
        "shipping_addresses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True),
        sa.Column("recipient_name", sa.String(length=100), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=False),
        sa.Column("address_line", sa.Text(), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=False),
        sa.Column("postal_code", sa.String(length=20), nullable=True),
        sa.Column("country", sa.String(length=2), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bank_name", sa.String(length=100), nullable=False),
        sa.Column("account_name", sa.String(length=100), nullable=False),
        sa.Column("account_number", sa.String(length=50), nullable=False),
        sa.Column("branch", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False),
    )

    for table in ("products", "services"):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "seller_id",
                sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"),
                nullable=False,
                index=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("requires_quote", sa.Boolean(), nullable=False),
            sa.Column(
                "requires_design_approval", sa.Boolean(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            *_timestamps(),
        )

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "product_id",
            sa.Integer(),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
            index=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("weight_kg", sa.Numeric(8, 3), nullable=True),
        sa.Column("inventory", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "price >= 0", name="check_variant_price_non_negative"),
    )

    op.create_table(
        "service_packages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "service_id",
            sa.Integer(),
            sa.ForeignKey("services.id", ondelete="CASCADE"),
            nullable=False,
            index=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("duration_hours", sa.Integer(), nullable=True),
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "buyer_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True),
        sa.Column(
            "seller_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True),
        sa.Column(
            "product_id",
            sa.Integer(),
            sa.ForeignKey("products.id", ondelete="SET NULL"),
            nullable=True),
        sa.Column(
            "service_id",
            sa.Integer(),
            sa.ForeignKey("services.id", ondelete="SET NULL"),
            nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "design_approvals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "conversation_id",
            sa.Integer(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
            index=True),
        sa.Column(
            "buyer_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "seller_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "context",
            sa.Enum("PRODUCT", "QUOTE", name="designcontext"),
            nullable=False),
        sa.Column(
            "product_id", sa.Integer(), sa.ForeignKey("products.id"),
            nullable=True),
        sa.Column(
            "variant_id", sa.Integer(),
            sa.ForeignKey("product_variants.id"), nullable=True),
        sa.Column(
            "service_id", sa.Integer(), sa.ForeignKey("services.id"),
            nullable=True),
        sa.Column(
            "package_id", sa.Integer(),
            sa.ForeignKey("service_packages.id"), nullable=True),
        # FK to quotes is added once quotes exists.
        sa.Column("quote_id", sa.Integer(), nullable=True),
        sa.Column("files_json", sa.Text(), nullable=False),
        sa.Column("buyer_notes", sa.Text(), nullable=True),
        sa.Column("seller_notes", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING", "UNDER_REVIEW", "CHANGES_REQUESTED",
                "RESUBMITTED", "APPROVED", "REJECTED",
                name="designapprovalstatus"),
            nullable=False,
            index=True),
        sa.Column(
            "copied_from_id", sa.Integer(),
            sa.ForeignKey("design_approvals.id"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        *_timestamps(updated=True),
        sa.CheckConstraint(
            "(product_id IS NULL) <> (service_id IS NULL)",
            name="check_design_single_item"),
        sa.CheckConstraint(
            "context <> 'QUOTE' OR "
            "(variant_id IS NULL AND package_id IS NULL)",
            name="check_quote_design_has_no_variant"),
    )

    op.create_table(
        "quotes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "conversation_id",
            sa.Integer(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
            index=True),
        sa.Column(
            "buyer_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "seller_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "product_id", sa.Integer(), sa.ForeignKey("products.id"),
            nullable=True),
        sa.Column(
            "variant_id", sa.Integer(),
            sa.ForeignKey("product_variants.id"), nullable=True),
        sa.Column(
            "service_id", sa.Integer(), sa.ForeignKey("services.id"),
            nullable=True),
        sa.Column(
            "package_id", sa.Integer(),
            sa.ForeignKey("service_packages.id"), nullable=True),
        sa.Column(
            "design_approval_id", sa.Integer(),
            sa.ForeignKey("design_approvals.id"), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "REQUESTED", "SENT", "ACCEPTED", "REJECTED", "EXPIRED",
                "SUPERSEDED", name="quotestatus"),
            nullable=False,
            index=True),
        sa.Column("quoted_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("specifications", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        *_timestamps(updated=True),
        sa.CheckConstraint(
            "quantity > 0", name="check_quote_quantity_positive"),
        sa.CheckConstraint(
            "(product_id IS NULL) <> (service_id IS NULL)",
            name="check_quote_single_item"),
    )

    with op.batch_alter_table("design_approvals", schema=None) as batch_op:
        batch_op.create_foreign_key(
            "fk_design_approvals_quote_id", "quotes", ["quote_id"], ["id"])

    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "buyer_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True),
        sa.Column(
            "variant_id",
            sa.Integer(),
            sa.ForeignKey("product_variants.id", ondelete="CASCADE"),
            nullable=False),
        sa.Column(
            "quote_id", sa.Integer(), sa.ForeignKey("quotes.id"),
            nullable=True),
        sa.Column(
            "design_approval_id", sa.Integer(),
            sa.ForeignKey("design_approvals.id"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="check_quantity_positive"),
        sa.UniqueConstraint(
            "buyer_id", "variant_id", name="uq_cart_buyer_variant"),
    )

    op.create_table(
        "checkout_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "buyer_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True),
        sa.Column(
            "payment_reference", sa.String(length=64), nullable=False,
            unique=True, index=True),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=False),
        sa.Column("shipping_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING_PAYMENT", "PAID", "CANCELLED",
                name="checkoutsessionstatus"),
            nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "consolidated_shipments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "buyer_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "shipping_address_id", sa.Integer(),
            sa.ForeignKey("shipping_addresses.id"), nullable=True),
        sa.Column("order_count", sa.Integer(), nullable=False),
        sa.Column("total_weight", sa.Numeric(10, 3), nullable=False),
        sa.Column("total_shipping_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "carrier_awb", sa.String(length=100), nullable=True, index=True),
        sa.Column("carrier_label_url", sa.String(length=500), nullable=True),
        sa.Column("carrier_cost", sa.Numeric(10, 2), nullable=True),
        sa.Column("carrier_error", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING", "PICKED_UP", "IN_TRANSIT", "DELIVERED",
                "CANCELLED", name="shipmentstatus"),
            nullable=False),
        sa.Column(
            "carrier_payment_status",
            sa.Enum("UNPAID", "PAID", name="carrierpaymentstatus"),
            nullable=False),
        sa.Column("carrier_paid_at", sa.DateTime(), nullable=True),
        sa.Column("override_incomplete", sa.Boolean(), nullable=False),
        sa.Column("override_reason", sa.Text(), nullable=True),
        sa.Column(
            "created_by", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=True),
        *_timestamps(updated=True),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "checkout_session_id", sa.Integer(),
            sa.ForeignKey("checkout_sessions.id"), nullable=True,
            index=True),
        sa.Column(
            "buyer_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "seller_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "product_id", sa.Integer(), sa.ForeignKey("products.id"),
            nullable=False),
        sa.Column(
            "variant_id", sa.Integer(),
            sa.ForeignKey("product_variants.id"), nullable=False),
        sa.Column(
            "quote_id", sa.Integer(), sa.ForeignKey("quotes.id"),
            nullable=True),
        sa.Column(
            "design_approval_id", sa.Integer(),
            sa.ForeignKey("design_approvals.id"), nullable=True),
        sa.Column(
            "shipping_address_id", sa.Integer(),
            sa.ForeignKey("shipping_addresses.id"), nullable=True),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("shipping_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("product_weight", sa.Numeric(8, 3), nullable=True),
        sa.Column("status", ORDER_STATUS, nullable=False, index=True),
        sa.Column("ready_to_ship", sa.Boolean(), nullable=False),
        sa.Column(
            "consolidated_shipment_id", sa.Integer(),
            sa.ForeignKey("consolidated_shipments.id"), nullable=True,
            index=True),
        sa.Column("tracking_number", sa.String(length=100), nullable=True),
        sa.Column("return_attempt_count", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("shipped_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        *_timestamps(updated=True),
        sa.CheckConstraint(
            "quantity > 0", name="check_order_quantity_positive"),
        sa.CheckConstraint(
            "shipping_cost >= 0", name="check_order_shipping_non_negative"),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "buyer_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "seller_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "service_id", sa.Integer(), sa.ForeignKey("services.id"),
            nullable=False),
        sa.Column(
            "package_id", sa.Integer(),
            sa.ForeignKey("service_packages.id"), nullable=False),
        sa.Column(
            "quote_id", sa.Integer(), sa.ForeignKey("quotes.id"),
            nullable=True),
        sa.Column(
            "design_approval_id", sa.Integer(),
            sa.ForeignKey("design_approvals.id"), nullable=True),
        sa.Column(
            "payment_reference", sa.String(length=64), nullable=False,
            unique=True, index=True),
        sa.Column("scheduled_at", sa.DateTime(), nullable=True),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", BOOKING_STATUS, nullable=False, index=True),
        sa.Column("return_attempt_count", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(updated=True),
        sa.CheckConstraint(
            "quantity > 0", name="check_booking_quantity_positive"),
    )

    op.create_table(
        "boost_packages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )

    op.create_table(
        "boosted_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "product_id", sa.Integer(), sa.ForeignKey("products.id"),
            nullable=True, index=True),
        sa.Column(
            "service_id", sa.Integer(), sa.ForeignKey("services.id"),
            nullable=True, index=True),
        sa.Column("starts_at", sa.DateTime(), nullable=False),
        sa.Column("ends_at", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )

    op.create_table(
        "boost_purchases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "seller_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "package_id", sa.Integer(), sa.ForeignKey("boost_packages.id"),
            nullable=False),
        sa.Column(
            "product_id", sa.Integer(), sa.ForeignKey("products.id"),
            nullable=True),
        sa.Column(
            "service_id", sa.Integer(), sa.ForeignKey("services.id"),
            nullable=True),
        sa.Column(
            "boosted_item_id", sa.Integer(),
            sa.ForeignKey("boosted_items.id"), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "payment_reference", sa.String(length=64), nullable=False,
            unique=True, index=True),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING", "PAID", "FAILED", "CANCELLED",
                name="boostpurchasestatus"),
            nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "type",
            sa.Enum("ORDER", "BOOKING", "BOOST", name="transactiontype"),
            nullable=False),
        sa.Column(
            "order_id", sa.Integer(), sa.ForeignKey("orders.id"),
            nullable=True, index=True),
        sa.Column(
            "booking_id", sa.Integer(), sa.ForeignKey("bookings.id"),
            nullable=True, index=True),
        sa.Column(
            "boost_purchase_id", sa.Integer(),
            sa.ForeignKey("boost_purchases.id"), nullable=True, index=True),
        sa.Column(
            "buyer_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "seller_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=True, index=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("seller_payout", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=True),
        sa.Column(
            "bank_account_id", sa.Integer(),
            sa.ForeignKey("bank_accounts.id"), nullable=True),
        sa.Column("payment_slip_url", sa.String(length=500), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING", "ESCROW", "PAID", "RELEASED", "REFUNDED",
                name="transactionstatus"),
            nullable=False,
            index=True),
        sa.Column("refunded_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column(
            "commission_reversed_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("escrow_at", sa.DateTime(), nullable=True),
        sa.Column("released_at", sa.DateTime(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        *_timestamps(updated=True),
        sa.CheckConstraint("amount >= 0", name="check_transaction_amount"),
        sa.CheckConstraint(
            "(CASE WHEN order_id IS NULL THEN 0 ELSE 1 END) + "
            "(CASE WHEN booking_id IS NULL THEN 0 ELSE 1 END) + "
            "(CASE WHEN boost_purchase_id IS NULL THEN 0 ELSE 1 END) = 1",
            name="check_transaction_single_parent"),
    )

    op.create_table(
        "return_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "order_id", sa.Integer(), sa.ForeignKey("orders.id"),
            nullable=True, index=True),
        sa.Column(
            "booking_id", sa.Integer(), sa.ForeignKey("bookings.id"),
            nullable=True, index=True),
        sa.Column(
            "buyer_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "seller_id", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=False, index=True),
        sa.Column(
            "reason",
            sa.Enum(
                "DEFECTIVE", "WRONG_ITEM", "NOT_AS_DESCRIBED", "DAMAGED",
                "CHANGED_MIND", "OTHER", name="returnreason"),
            nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("evidence_json", sa.Text(), nullable=True),
        sa.Column(
            "requested_refund_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "REQUESTED", "UNDER_REVIEW", "SELLER_APPROVED",
                "SELLER_REJECTED", "ADMIN_APPROVED", "ADMIN_REJECTED",
                "REFUNDED", "COMPLETED", "CANCELLED", name="returnstatus"),
            nullable=False,
            index=True),
        sa.Column(
            "seller_status",
            sa.Enum(
                "PENDING", "APPROVED", "REJECTED",
                name="sellerreturnstatus"),
            nullable=False),
        sa.Column("seller_response", sa.Text(), nullable=True),
        sa.Column(
            "seller_proposed_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("seller_responded_at", sa.DateTime(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("admin_override", sa.Boolean(), nullable=False),
        sa.Column(
            "approved_refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column(
            "commission_reversed_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column(
            "reviewed_by", sa.Integer(), sa.ForeignKey("users.id"),
            nullable=True),
        sa.Column("under_review_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        *_timestamps(updated=True),
        sa.CheckConstraint(
            "(order_id IS NULL) <> (booking_id IS NULL)",
            name="check_return_single_parent"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True),
        sa.Column("type", sa.String(length=50), nullable=False, index=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "actor_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True),
        sa.Column("actor_role", sa.String(length=20), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("ip", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, index=True),
    )


def downgrade():
    for table in (
            "audit_logs",
            "notifications",
            "return_requests",
            "transactions",
            "boost_purchases",
            "boosted_items",
            "boost_packages",
            "bookings",
            "orders",
            "consolidated_shipments",
            "checkout_sessions",
            "cart_items"):
        op.drop_table(table)
    with op.batch_alter_table("design_approvals", schema=None) as batch_op:
        batch_op.drop_constraint(
            "fk_design_approvals_quote_id", type_="foreignkey")
    for table in (
            "quotes",
            "design_approvals",
            "conversations",
            "service_packages",
            "product_variants",
            "services",
            "products",
            "bank_accounts",
            "shipping_addresses",
            "users"):
        op.drop_table(table)
