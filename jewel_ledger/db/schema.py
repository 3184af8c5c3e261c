# jewel_ledger/db/schema.py

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey,
    Integer, MetaData, Numeric, String, Table, Text, UniqueConstraint,
)

metadata = MetaData()


def _money(name, **kw):
    return Column(name, Numeric(18, 2), nullable=False, default=0, **kw)


def _weight(name, **kw):
    return Column(name, Numeric(12, 3), nullable=False, default=0, **kw)


# ---- Collaborators: customers, catalog, rates ----

customers = Table(
    "customers",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String, nullable=False),
    Column("phone", String, nullable=False, unique=True),
    Column("email", String, nullable=True),
    Column("address", Text, nullable=True),
    _money("credit_limit"),
    # materialized aggregates, maintained alongside the invoice log
    _money("total_due"),
    _money("total_purchases"),
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    CheckConstraint("total_due >= 0", name="ck_customers_total_due_nonneg"),
    CheckConstraint("credit_limit >= 0", name="ck_customers_credit_limit_nonneg"),
)

products = Table(
    "products",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("sku", String, nullable=False, unique=True),
    Column("name", String, nullable=False),
    Column("category", String, nullable=False, default="Gold"),
    Column("purity", String, nullable=True),
    Column("is_weight_managed", Boolean, nullable=False, default=False),
    Column("quantity", Integer, nullable=False, default=0),
    _weight("available_weight"),
    _money("purchase_price"),
    _money("selling_price"),
    CheckConstraint("quantity >= 0", name="ck_products_quantity_nonneg"),
    CheckConstraint("available_weight >= 0", name="ck_products_weight_nonneg"),
)

gold_rates = Table(
    "gold_rates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    _money("rate_24k"),
    _money("rate_22k"),
    _money("rate_18k"),
    Column("source", String, nullable=False, default="Manual"),
    Column("recorded_at", DateTime, nullable=False),
)

sequences = Table(
    "sequences",
    metadata,
    Column("name", String, primary_key=True),
    Column("value", Integer, nullable=False, default=0),
)

# ---- Orders ----

orders = Table(
    "orders",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("order_number", String, nullable=False, unique=True),
    Column("customer_id", String(32), ForeignKey("customers.id"), nullable=False),
    # snapshot of the customer at creation
    Column("customer_name", String, nullable=False),
    Column("customer_phone", String, nullable=True),
    Column("customer_email", String, nullable=True),
    _money("total_amount"),
    _money("advance_amount"),
    _money("paid_amount"),
    _money("remaining_amount"),
    Column("order_status", String, nullable=False, default="PENDING"),
    Column("expected_delivery_date", Date, nullable=False),
    Column("actual_delivery_date", DateTime, nullable=True),
    # set once, on delivery; invoices.order_id is the enforced side
    Column("invoice_id", String(32), nullable=True),
    Column("notes", Text, nullable=True),
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    CheckConstraint("total_amount >= 0", name="ck_orders_total_nonneg"),
    CheckConstraint("remaining_amount >= 0", name="ck_orders_remaining_nonneg"),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("order_id", String(32), ForeignKey("orders.id"), nullable=False, index=True),
    Column("line_no", Integer, nullable=False),
    Column("product_id", String(32), ForeignKey("products.id"), nullable=True),
    Column("is_custom", Boolean, nullable=False, default=False),
    Column("name", String, nullable=False),
    Column("quantity", Integer, nullable=False, default=1),
    _money("price"),
    _weight("weight"),
    Column("sku", String, nullable=True),
    Column("purity", String, nullable=True),
    _money("making_charge"),
    _money("wastage"),
    _money("discount"),
    _money("line_total"),
    # free-form custom order fields
    Column("target_weight", String, nullable=True),
    Column("size", String, nullable=True),
    Column("item_type", String, nullable=True),
    Column("special_instructions", Text, nullable=True),
    Column("design_image", String, nullable=True),
    CheckConstraint("quantity >= 1", name="ck_order_items_quantity_pos"),
)

order_payments = Table(
    "order_payments",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("order_id", String(32), ForeignKey("orders.id"), nullable=False, index=True),
    _money("amount"),
    Column("method", String, nullable=False),
    Column("type", String, nullable=False),
    Column("notes", Text, nullable=True),
    Column("performed_by", String, nullable=True),
    Column("created_at", DateTime, nullable=False),
    CheckConstraint("amount > 0", name="ck_order_payments_amount_pos"),
)

# ---- Invoices ----

invoices = Table(
    "invoices",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("invoice_number", String, nullable=False, unique=True),
    Column("customer_id", String(32), ForeignKey("customers.id"), nullable=False, index=True),
    Column("order_id", String(32), ForeignKey("orders.id"), nullable=True, unique=True),
    _money("subtotal"),
    _money("gst"),
    _money("discount"),
    _money("exchange_amount"),
    _money("total"),
    _money("paid_amount"),
    _money("due_amount"),
    Column("payment_mode", String, nullable=False),
    # per-bucket settlement breakdown; paid_amount is their sum
    _money("paid_cash"),
    _money("paid_upi"),
    _money("paid_card"),
    _money("paid_bank"),
    _money("paid_exchange"),
    Column("status", String, nullable=False),
    Column("rate_24k", Numeric(18, 2), nullable=True),
    Column("rate_22k", Numeric(18, 2), nullable=True),
    Column("rate_18k", Numeric(18, 2), nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_by", String, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("cancelled_at", DateTime, nullable=True),
    Column("version", Integer, nullable=False, default=1),
    CheckConstraint("total >= 0", name="ck_invoices_total_nonneg"),
    CheckConstraint("paid_amount >= 0", name="ck_invoices_paid_nonneg"),
    CheckConstraint("due_amount >= 0", name="ck_invoices_due_nonneg"),
)

invoice_items = Table(
    "invoice_items",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("invoice_id", String(32), ForeignKey("invoices.id"), nullable=False, index=True),
    Column("line_no", Integer, nullable=False),
    Column("product_id", String(32), ForeignKey("products.id"), nullable=True),
    Column("description", String, nullable=True),
    Column("quantity", Integer, nullable=False, default=1),
    _weight("weight"),
    _money("rate"),
    _money("purchase_rate"),
    _money("making_charge"),
    _money("wastage"),
    _money("discount"),
    _money("old_gold_adjustment"),
    _money("gst"),
    _money("subtotal"),
    _money("line_total"),
    Column("details", JSON, nullable=True),
)

customer_payments = Table(
    "customer_payments",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("customer_id", String(32), ForeignKey("customers.id"), nullable=False, index=True),
    _money("amount"),
    Column("payment_mode", String, nullable=False),
    Column("reference_number", String, nullable=True),
    Column("notes", Text, nullable=True),
    Column("performed_by", String, nullable=True),
    Column("created_at", DateTime, nullable=False),
    CheckConstraint("amount > 0", name="ck_customer_payments_amount_pos"),
)

invoice_payments = Table(
    "invoice_payments",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("invoice_id", String(32), ForeignKey("invoices.id"), nullable=False, index=True),
    # SALE (collected at billing) | PAYMENT | ARREARS
    Column("kind", String, nullable=False),
    _money("amount"),
    Column("payment_mode", String, nullable=False),
    _money("cash"),
    _money("upi"),
    _money("card"),
    _money("bank"),
    Column("customer_payment_id", String(32), ForeignKey("customer_payments.id"), nullable=True),
    Column("performed_by", String, nullable=True),
    Column("created_at", DateTime, nullable=False),
    CheckConstraint("amount > 0", name="ck_invoice_payments_amount_pos"),
)

# ---- Old metal ----

old_gold = Table(
    "old_gold",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("customer_id", String(32), ForeignKey("customers.id"), nullable=False, index=True),
    Column("category", String, nullable=False, default="Gold"),
    Column("description", String, nullable=True),
    _weight("weight"),
    Column("purity", String, nullable=False),
    _money("rate"),
    _money("total_value"),
    Column("status", String, nullable=False, default="Pending"),
    Column("adjusted_invoice_id", String(32), ForeignKey("invoices.id"), nullable=True),
    _money("adjusted_amount"),
    Column("adjusted_at", DateTime, nullable=True),
    Column("payout_mode", String, nullable=True),
    Column("purity_tested", Boolean, nullable=False, default=False),
    Column("test_notes", Text, nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_by", String, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("version", Integer, nullable=False, default=1),
    CheckConstraint("total_value >= 0", name="ck_old_gold_value_nonneg"),
    CheckConstraint("adjusted_amount <= total_value", name="ck_old_gold_adjusted_le_value"),
)

# ---- Outflow documents ----

expenses = Table(
    "expenses",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("category", String, nullable=False),
    _money("amount"),
    Column("description", String, nullable=False),
    Column("payment_mode", String, nullable=False, default="Cash"),
    Column("date", DateTime, nullable=False),
    Column("created_by", String, nullable=True),
    CheckConstraint("amount > 0", name="ck_expenses_amount_pos"),
)

purchases = Table(
    "purchases",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("supplier_name", String, nullable=False),
    _money("total_amount"),
    _money("paid_amount"),
    Column("payment_mode", String, nullable=False, default="Cash"),
    Column("date", DateTime, nullable=False),
    Column("notes", Text, nullable=True),
    Column("created_by", String, nullable=True),
    CheckConstraint("paid_amount >= 0", name="ck_purchases_paid_nonneg"),
    CheckConstraint("paid_amount <= total_amount", name="ck_purchases_paid_le_total"),
)

supplier_payments = Table(
    "supplier_payments",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("supplier_name", String, nullable=False),
    Column("purchase_id", String(32), ForeignKey("purchases.id"), nullable=True),
    _money("amount"),
    Column("payment_mode", String, nullable=False),
    Column("reference_number", String, nullable=True),
    Column("notes", Text, nullable=True),
    Column("date", DateTime, nullable=False),
    Column("created_by", String, nullable=True),
    CheckConstraint("amount > 0", name="ck_supplier_payments_amount_pos"),
)

# ---- Append-only cash ledger ----

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("type", String, nullable=False),
    Column("category", String, nullable=False),
    _money("amount"),
    Column("payment_mode", String, nullable=False),
    Column("description", String, nullable=True),
    Column("ref_model", String, nullable=False),
    Column("ref_id", String(32), nullable=False),
    Column("date", DateTime, nullable=False, index=True),
    Column("performed_by", String, nullable=True),
    Column("created_at", DateTime, nullable=False),
    UniqueConstraint("ref_model", "ref_id", "category", name="uq_transactions_source"),
    CheckConstraint("amount > 0", name="ck_transactions_amount_pos"),
)
