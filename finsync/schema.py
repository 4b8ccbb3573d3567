from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

metadata = MetaData()

external_accounts = Table(
    "external_accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("source", String(20), nullable=False),
    Column("external_account_id", String(64), nullable=False),
    Column("account_type", String(50), nullable=False),
    Column("status", String(50)),
    Column("risk_level", Integer),
    Column("net_contributions", Numeric(18, 4)),
    Column("last_sync_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "source", "external_account_id", name="uq_external_accounts_ref"),
)

balances = Table(
    "balances",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("external_accounts.id"), nullable=False),
    Column("source", String(20), nullable=False),
    Column("external_balance_id", String(64), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("amount", Numeric(18, 4), nullable=False),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("source", "external_balance_id", name="uq_balances_ref"),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("type", String(20), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

category_keywords = Table(
    "category_keywords",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("keyword", String(255), nullable=False),
    UniqueConstraint("category_id", "keyword", name="uq_category_keywords"),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("external_ref", String(128), nullable=False, unique=True),
    Column("user_id", String(64), nullable=False),
    Column("account_id", Integer, ForeignKey("external_accounts.id")),
    Column("type", String(20), nullable=False),
    Column("amount", Numeric(18, 4), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("amount_in_base_currency", Numeric(18, 4), nullable=False),
    Column("description", String(500)),
    Column("date", DateTime, nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

fx_rates = Table(
    "fx_rates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("from_currency", String(3), nullable=False),
    Column("to_currency", String(3), nullable=False),
    Column("date", Date, nullable=False),
    Column("rate", Numeric(18, 8), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("from_currency", "to_currency", "date", name="uq_fx_rates_pair_date"),
)

portfolio_snapshots = Table(
    "portfolio_snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("external_accounts.id"), nullable=False),
    Column("date", Date, nullable=False),
    Column("total_value", Numeric(18, 4), nullable=False),
    Column("total_invested", Numeric(18, 4), nullable=False),
    Column("returns", Numeric(18, 4), nullable=False),
    Column("returns_percent", Numeric(10, 4), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("account_id", "date", name="uq_portfolio_snapshots_account_date"),
)

holdings = Table(
    "holdings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("snapshot_id", Integer, ForeignKey("portfolio_snapshots.id"), nullable=False),
    Column("instrument_name", String(255), nullable=False),
    Column("instrument_type", String(50), nullable=False),
    Column("isin", String(20)),
    Column("shares", Numeric(18, 8), nullable=False),
    Column("value", Numeric(18, 4), nullable=False),
    Column("weight", Numeric(7, 4), nullable=False),
)

financial_assets = Table(
    "financial_assets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("symbol", String(20), nullable=False),
    Column("name", String(255), nullable=False),
    Column("type", String(10), nullable=False),
    Column("shares", Numeric(18, 8), nullable=False),
    Column("avg_cost_basis", Numeric(18, 4), nullable=False),
    Column("currency", String(3), nullable=False, server_default="USD"),
    Column("last_price", Numeric(18, 4)),
    Column("last_price_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "symbol", "type", name="uq_financial_assets_symbol"),
)

financial_asset_prices = Table(
    "financial_asset_prices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("asset_id", Integer, ForeignKey("financial_assets.id"), nullable=False),
    Column("date", Date, nullable=False),
    Column("price", Numeric(18, 4), nullable=False),
    UniqueConstraint("asset_id", "date", name="uq_financial_asset_prices_day"),
)

sync_logs = Table(
    "sync_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("mode", String(10), nullable=False),
    Column("status", String(10), nullable=False),
    Column("transactions_added", Integer, nullable=False, server_default="0"),
    Column("balances_updated", Integer, nullable=False, server_default="0"),
    Column("snapshots_added", Integer, nullable=False, server_default="0"),
    Column("prices_updated", Integer, nullable=False, server_default="0"),
    Column("error_message", Text),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

DEFAULT_CATEGORIES: list[tuple[str, str]] = [
    ("Rent", "FIXED_EXPENSE"),
    ("Electricity", "FIXED_EXPENSE"),
    ("Natural Gas", "FIXED_EXPENSE"),
    ("Water", "FIXED_EXPENSE"),
    ("Internet", "FIXED_EXPENSE"),
    ("Gym", "FIXED_EXPENSE"),
    ("Phone", "FIXED_EXPENSE"),
    ("Insurance", "FIXED_EXPENSE"),
    ("Food", "VARIABLE_EXPENSE"),
    ("Clothing", "VARIABLE_EXPENSE"),
    ("Tech", "VARIABLE_EXPENSE"),
    ("Restaurants", "VARIABLE_EXPENSE"),
    ("Bars", "VARIABLE_EXPENSE"),
    ("Transportation", "VARIABLE_EXPENSE"),
    ("Travel", "VARIABLE_EXPENSE"),
    ("Entertainment", "VARIABLE_EXPENSE"),
    ("Healthcare", "VARIABLE_EXPENSE"),
    ("Other Expenses", "VARIABLE_EXPENSE"),
    ("Salary", "INCOME"),
    ("Freelance", "INCOME"),
    ("Other Income", "INCOME"),
    ("Index Funds", "INVESTMENT"),
    ("ETFs", "INVESTMENT"),
    ("Stocks", "INVESTMENT"),
    ("Crypto", "INVESTMENT"),
    ("Internal Transfer", "TRANSFER"),
]

DEFAULT_CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "Food": ["supermarket", "grocery", "mercadona", "lidl", "aldi", "carrefour", "eroski"],
    "Restaurants": ["restaurant", "cafe", "coffee", "mcdonald", "burger", "pizza", "sushi"],
    "Bars": ["pub", "nightclub", "cerveceria"],
    "Transportation": ["uber", "taxi", "cabify", "bolt", "metro", "renfe", "gas station", "fuel"],
    "Tech": ["amazon", "apple", "mediamarkt", "pccomponentes", "aliexpress"],
    "Entertainment": ["netflix", "spotify", "hbo", "disney", "cinema", "steam", "playstation", "xbox"],
    "Gym": ["gym", "fitness", "gimnasio"],
    "Phone": ["vodafone", "movistar", "yoigo"],
    "Internet": ["internet", "fiber", "fibra"],
    "Insurance": ["insurance", "seguro", "mapfre", "axa", "allianz"],
    "Healthcare": ["pharmacy", "farmacia", "doctor", "hospital", "clinic", "dentist"],
    "Clothing": ["zara", "mango", "pull&bear", "bershka", "stradivarius", "uniqlo"],
}
