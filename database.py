"""
MongoDB access for the Novel Reading backend.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; the
health endpoint reports that state instead of failing at import time.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Union

from pydantic import BaseModel
from pymongo import MongoClient

from config import get_settings

logger = logging.getLogger(__name__)

_client = None
db = None

_settings = get_settings()
if _settings.database_url and _settings.database_name:
    try:
        _client = MongoClient(_settings.database_url)
        db = _client[_settings.database_name]
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        db = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    if db is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)

