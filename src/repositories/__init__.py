"""Record store and object storage adapters."""

from config.settings import Settings
from repositories.base import RecordStore


def build_record_store(settings: Settings) -> RecordStore:
    """Pick the record store backend named by ``RECORD_BACKEND``."""
    if settings.record_backend == "sql":
        from repositories.sql_repo import SqlRepository, get_db_engine

        return SqlRepository(get_db_engine(settings.database_url, settings.db_secret_arn))
    if settings.record_backend == "dynamodb":
        from repositories.dynamodb_repo import DynamoDbRepository

        return DynamoDbRepository(settings.customers_table, settings.interactions_table)
    raise ValueError(f"Unknown record backend: {settings.record_backend}")
