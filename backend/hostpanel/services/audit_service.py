"""
操作审计服务：记录关键操作到 audit_logs 表
"""
import json
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from hostpanel.core.config import settings
from hostpanel.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


async def log_audit(
    db: AsyncSession,
    user_id: Optional[int],
    action: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    detail: Optional[dict[str, Any]] = None,
    ip: Optional[str] = None,
    request_id: Optional[str] = None,
) -> None:
    """写入一条审计日志。若未启用 AUDIT_LOG_ENABLED 则跳过；写入失败只记警告，不影响主流程。"""
    if not getattr(settings, "AUDIT_LOG_ENABLED", True):
        return
    try:
        detail_str = json.dumps(detail, ensure_ascii=False, default=str) if isinstance(detail, dict) else (str(detail) if detail else None)
        entry = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            detail=detail_str,
            ip=ip,
            request_id=request_id,
        )
        db.add(entry)
        await db.commit()
    except SQLAlchemyError as e:
        logger.warning("审计日志写入失败 action=%s resource=%s:%s: %s", action, resource_type, resource_id, e)
        await db.rollback()
