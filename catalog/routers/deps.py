from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from catalog.db import get_db
from catalog.observability import log_event
from catalog.service import CatalogService


def get_requester_id(
    x_user_id: Optional[str] = Header(None, description="Caller identity set by the authenticating proxy")
) -> Optional[str]:
    """
    Requester id from the X-User-Id header, or None for anonymous calls.
    """
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return None


def get_service(db: Session = Depends(get_db)) -> CatalogService:
    return CatalogService(db, publisher=log_event)
