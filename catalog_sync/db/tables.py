# catalog_sync/db/tables.py
"""
SQLAlchemy Core view of the relational catalog tables this service reads.
Only the columns the projection and the currency engine need are declared;
the relational store owns the full schema and its migrations.
"""
from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, MetaData, String, Table, func,
)
from sqlalchemy.dialects.postgresql import JSONB

metadata = MetaData()

# jsonb on PostgreSQL, plain JSON elsewhere (sqlite in tests)
Json = JSON().with_variant(JSONB(), "postgresql")

stores = Table(
    "stores",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("name", Json, nullable=False),
    Column("short_description", Json, nullable=False),
    Column("long_description", Json),
    Column("slug", String, nullable=False),
    Column("status", String, nullable=False, default="draft"),
    Column("currency", String),
    Column("default_language", String),
    Column("rating", Float, nullable=False, default=0.0),
    Column("phone", String),
    Column("email", String),
    Column("address", String),
    Column("country", String),
    Column("facebook_url", String),
    Column("twitter_url", String),
    Column("instagram_url", String),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", Json, nullable=False),
    Column("meta_field", Json),
    Column("parent_id", Integer),
    Column("level", Integer, nullable=False, default=1),
)

base_products = Table(
    "base_products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("store_id", Integer, ForeignKey("stores.id"), nullable=False),
    Column("name", Json, nullable=False),
    Column("short_description", Json, nullable=False),
    Column("long_description", Json),
    Column("seo_title", Json),
    Column("seo_description", Json),
    Column("currency", String, nullable=False),
    Column("category_id", Integer, nullable=False),
    Column("views", Integer, nullable=False, default=0),
    Column("rating", Float, nullable=False, default=0.0),
    Column("slug", String, nullable=False, default=""),
    Column("status", String, nullable=False, default="draft"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("base_product_id", Integer, ForeignKey("base_products.id"), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("discount", Float),
    Column("photo_main", String),
    Column("vendor_code", String),
    Column("cashback", Float),
    Column("price", Float, nullable=False),
    Column("currency", String),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

attributes = Table(
    "attributes",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", Json, nullable=False),
    Column("value_type", String, nullable=False),
    Column("meta_field", Json),
)

attribute_values = Table(
    "attribute_values",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("attr_id", Integer, ForeignKey("attributes.id"), nullable=False),
    Column("code", String, nullable=False),
    Column("translations", Json),
)

prod_attr_values = Table(
    "prod_attr_values",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("prod_id", Integer, ForeignKey("products.id"), nullable=False),
    Column("base_prod_id", Integer, nullable=False),
    Column("attr_id", Integer, ForeignKey("attributes.id"), nullable=False),
    Column("value", String, nullable=False),
    Column("value_type", String, nullable=False),
    Column("meta_field", String),
    Column("attr_value_id", Integer, ForeignKey("attribute_values.id")),
)

currency_exchange = Table(
    "currency_exchange",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("data", Json, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)
