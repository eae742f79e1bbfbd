# API Database Package
from src.database.connection import SessionLocal, get_database_url, engine

__all__ = [
    "SessionLocal",
    "get_database_url",
    "engine",
]
