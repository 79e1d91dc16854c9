from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    func,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255)),
    Column("initial_balance", Numeric(12, 2), nullable=False, server_default="0"),
    Column("margin_pct", Integer, nullable=False, server_default="0"),
    Column("month_start_day", Integer, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

recurring_items = Table(
    "recurring_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("kind", String(20), nullable=False),
    Column("label", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("day_of_month", Integer, nullable=False),
    Column("frequency", String(20), nullable=False, server_default="MONTHLY"),
    Column("frequency_data", JSON),
    Column("category", String(255)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

planned_expenses = Table(
    "planned_expenses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("label", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("date", Date, nullable=False),
    Column("spent", Boolean, nullable=False, server_default="0"),
    Column("category", String(255), nullable=False, server_default="other"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

balance_adjustments = Table(
    "balance_adjustments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("description", String(500), nullable=False),
    Column("type", String(30), nullable=False, server_default="MANUAL_ADJUSTMENT"),
    Column("created_at", DateTime, nullable=False),
)

project_budgets = Table(
    "project_budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("description", String(500)),
    Column("target_amount", Numeric(12, 2), nullable=False),
    Column("current_amount", Numeric(12, 2), nullable=False, server_default="0"),
    Column("target_date", Date),
    Column("status", String(20), nullable=False, server_default="ACTIVE"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

budget_contributions = Table(
    "budget_contributions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_budget_id", Integer, ForeignKey("project_budgets.id"), nullable=False),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("description", String(500)),
    Column("created_at", DateTime, nullable=False),
)

unexpected_expenses = Table(
    "unexpected_expenses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("label", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("date", Date, nullable=False),
    Column("category", String(30), nullable=False, server_default="other"),
    Column("description", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)
