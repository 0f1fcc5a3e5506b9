"""
套餐目录API（只读）
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from hostpanel.core.database import get_db
from hostpanel.schemas.plan import PlanResponse, PlanListResponse
from hostpanel.services.plan_service import PlanService

router = APIRouter()


@router.get("", response_model=PlanListResponse)
async def get_plans(db: AsyncSession = Depends(get_db)):
    """获取在售套餐列表"""
    plans = await PlanService(db).get_plans()
    return {"plans": plans, "total": len(plans)}


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(plan_id: int, db: AsyncSession = Depends(get_db)):
    """获取套餐详情"""
    plan = await PlanService(db).get_plan(plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="套餐不存在")
    return plan
