"""
Uniform response envelope and pagination helpers.

Every endpoint answers with::

    {"success": bool, "message": str, "data": ..., "timestamp": ISO8601,
     "pagination": {...}}   # list endpoints only
"""
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Query

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def _timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


def success_response(
    message: str,
    data: Any = None,
    pagination: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build a success envelope. FastAPI encodes datetimes and enums in ``data``."""
    body = {
        "success": True,
        "message": message,
        "data": data,
        "timestamp": _timestamp(),
    }
    if pagination is not None:
        body["pagination"] = pagination
    return body


def error_response(message: str, data: Any = None, error: Optional[str] = None) -> Dict[str, Any]:
    """Build a failure envelope. ``error`` carries a stack trace outside production."""
    body = {
        "success": False,
        "message": message,
        "data": data,
        "timestamp": _timestamp(),
    }
    if error:
        body["error"] = error
    return body


def build_pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "totalItems": total,
        "itemsPerPage": limit,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


def paginate(query: Query, page: int, limit: int) -> Tuple[List[Any], Dict[str, Any]]:
    """
    Count and slice a query.

    Args:
        query: SQLAlchemy query, already filtered and ordered
        page: 1-based page number
        limit: Page size

    Returns:
        Tuple of (items on the page, pagination block)
    """
    total = query.order_by(None).count()
    offset = (page - 1) * limit
    items = query.offset(offset).limit(limit).all()
    return items, build_pagination(page, limit, total)


def paginated_response(message: str, items: List[Any], pagination: Dict[str, Any]) -> Dict[str, Any]:
    return success_response(message, data=items, pagination=pagination)
