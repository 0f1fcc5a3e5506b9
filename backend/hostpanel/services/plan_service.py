"""
套餐目录：只读
"""
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from hostpanel.models.plan import Plan


class PlanService:
    """套餐服务类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_plans(self) -> List[Plan]:
        """获取可购买的套餐列表，按价格升序"""
        result = await self.db.execute(
            select(Plan).where(Plan.is_active == True).order_by(Plan.price)  # noqa: E712
        )
        return list(result.scalars().all())

    async def get_plan(self, plan_id: int) -> Optional[Plan]:
        """获取套餐（含已下架）"""
        result = await self.db.execute(select(Plan).where(Plan.id == plan_id))
        return result.scalar_one_or_none()

    async def get_active_plan(self, plan_id: int) -> Optional[Plan]:
        """获取在售套餐，已下架返回 None"""
        plan = await self.get_plan(plan_id)
        if plan is None or not plan.is_active:
            return None
        return plan
