"""
套餐相关Schema
"""
from pydantic import BaseModel
from typing import Optional, List


class PlanResponse(BaseModel):
    """套餐响应"""
    id: int
    name: str
    description: Optional[str] = None
    memory: int
    disk: int
    cpu: int
    price: float
    is_active: bool

    class Config:
        from_attributes = True


class PlanListResponse(BaseModel):
    """套餐列表响应"""
    plans: List[PlanResponse]
    total: int
