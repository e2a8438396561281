"""SQL record store using SQLAlchemy Core (Postgres in prod, SQLite locally)."""

import json
from enum import Enum
from typing import List, Optional

import boto3
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from models.customer import Customer
from models.interaction import Interaction
from repositories.base import RecordStore
from utils.error_handling import NotFoundError, ValidationError
from utils.logging_config import get_logger

logger = get_logger(__name__)

metadata = MetaData()

customers = Table(
    "customers",
    metadata,
    Column("customer_id", String(36), primary_key=True),
    Column("email", String(320), nullable=False, unique=True, index=True),
    Column("name", String(255)),
    Column("company", String(255)),
    Column("stage", String(32), nullable=False),
    Column("first_contact", DateTime(timezone=True), nullable=False),
    Column("last_contact", DateTime(timezone=True), nullable=False),
    Column("interaction_count", Integer, nullable=False, default=0),
    Column("sentiment_score", Float, nullable=False),
    Column("conversion_probability", Float, nullable=False),
    Column("budget_notes", Text),
    Column("timeline_notes", Text),
)

interactions = Table(
    "interactions",
    metadata,
    Column("interaction_id", String(36), primary_key=True),
    Column("customer_id", String(36), ForeignKey("customers.customer_id"), nullable=False, index=True),
    Column("direction", String(16), nullable=False),
    Column("subject", Text, nullable=False, default=""),
    Column("body", Text, nullable=False, default=""),
    Column("intent", String(32), nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("confidence", Float),
    Column("thread_id", String(998)),
    Column("message_id", String(998)),
    Column("escalated", Boolean, nullable=False, default=False),
)


def get_db_engine(db_url: Optional[str] = None, db_secret_arn: Optional[str] = None) -> Engine:
    """Create a SQLAlchemy engine from a URL or an RDS secret."""
    url = db_url or (_secret_to_db_url(db_secret_arn) if db_secret_arn else None)
    if not url:
        raise ValidationError("DATABASE_URL or DB_SECRET_ARN is required for the sql backend")
    if url.startswith("sqlite"):
        return create_engine(url)
    return create_engine(
        url,
        pool_size=1,
        max_overflow=2,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def _secret_to_db_url(secret_arn: str) -> Optional[str]:
    """Build a SQLAlchemy URL from an RDS secret."""
    sm = boto3.client("secretsmanager")
    secret = json.loads(sm.get_secret_value(SecretId=secret_arn)["SecretString"])
    host = secret.get("host")
    port = secret.get("port", 5432)
    username = secret.get("username")
    password = secret.get("password")
    dbname = secret.get("dbname", "postgres")
    if not (host and username and password):
        logger.warning("DB secret is missing connection fields", extra={"secret_arn": secret_arn})
        return None
    return f"postgresql+psycopg2://{username}:{password}@{host}:{port}/{dbname}"


def _row_values(model, exclude=None) -> dict:
    """Model fields as column values, with enums reduced to their plain values."""
    values = model.model_dump(exclude=exclude)
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in values.items()}


class SqlRepository(RecordStore):
    """Thin wrapper to keep SQL organized and parameterized."""

    def __init__(self, engine: Engine, create_schema: bool = True):
        self.engine = engine
        if create_schema:
            metadata.create_all(engine)

    def get_customer_by_email(self, email: str) -> Optional[Customer]:
        stmt = select(customers).where(customers.c.email == email.strip().lower())
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return Customer.model_validate(dict(row._mapping)) if row else None

    def create_customer(self, customer: Customer) -> Customer:
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(customers).values(**_row_values(customer)))
        except IntegrityError as exc:
            raise ValidationError(f"Customer {customer.email} already exists") from exc
        logger.info("Customer created", extra={"customer_id": customer.customer_id})
        return customer

    def update_customer(self, customer: Customer) -> Customer:
        values = _row_values(customer, exclude={"customer_id"})
        stmt = (
            update(customers)
            .where(customers.c.customer_id == customer.customer_id)
            .values(**values)
        )
        with self.engine.begin() as conn:
            result = conn.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError(f"Customer {customer.customer_id} not found")
        return customer

    def append_interaction(self, interaction: Interaction) -> Interaction:
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(customers.c.customer_id).where(
                    customers.c.customer_id == interaction.customer_id
                )
            ).first()
            if exists is None:
                raise NotFoundError(f"Customer {interaction.customer_id} not found")
            conn.execute(insert(interactions).values(**_row_values(interaction)))
        return interaction

    def list_interactions(self, customer_id: str, limit: int = 20) -> List[Interaction]:
        stmt = (
            select(interactions)
            .where(interactions.c.customer_id == customer_id)
            .order_by(interactions.c.timestamp.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [Interaction.model_validate(dict(row._mapping)) for row in rows]
