import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.finance import FinanceAuditLog

logger = logging.getLogger(__name__)


def _jsonable(values: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if values is None:
        return None
    # Money stays exact as a string; dates, enums and nested values follow FastAPI's encoding
    return jsonable_encoder(values, custom_encoder={Decimal: str})


def log_finance_action(
    db: AsyncSession,
    school_id: int,
    user_id: Optional[int],
    action: str,
    table_name: str,
    record_id: Optional[int],
    new_values: Optional[Dict[str, Any]] = None,
) -> FinanceAuditLog:
    """
    Stage an audit row in the caller's transaction. It is written (or rolled
    back) together with the change it describes.
    """
    entry = FinanceAuditLog(
        school_id=school_id,
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=record_id,
        new_values=_jsonable(new_values),
    )
    db.add(entry)
    logger.debug(f"Audit staged: {action} on {table_name}#{record_id} by user {user_id}")
    return entry
