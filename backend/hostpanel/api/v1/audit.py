"""操作审计 API（管理员）"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from hostpanel.core.database import get_db
from hostpanel.models.audit_log import AuditLog
from hostpanel.schemas.audit import AuditLogItem, AuditLogListResponse
from hostpanel.api.deps import require_admin
from hostpanel.schemas.auth import UserResponse

router = APIRouter()


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    action: str = Query(None, description="按操作类型筛选"),
    resource_type: str = Query(None, description="按资源类型筛选"),
    resource_id: str = Query(None, description="按资源 ID 筛选，如订单 ID"),
    admin: UserResponse = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """查询审计日志"""
    offset = (page - 1) * page_size
    stmt = select(AuditLog)
    count_stmt = select(func.count()).select_from(AuditLog)
    if action:
        stmt = stmt.where(AuditLog.action == action)
        count_stmt = count_stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)
        count_stmt = count_stmt.where(AuditLog.resource_type == resource_type)
    if resource_id:
        stmt = stmt.where(AuditLog.resource_id == resource_id)
        count_stmt = count_stmt.where(AuditLog.resource_id == resource_id)
    total = (await db.execute(count_stmt)).scalar() or 0
    stmt = stmt.order_by(AuditLog.id.desc()).offset(offset).limit(page_size)
    result = await db.execute(stmt)
    items = result.scalars().all()
    return AuditLogListResponse(
        items=[AuditLogItem.model_validate(x) for x in items],
        total=total,
        page=page,
        page_size=page_size,
    )
