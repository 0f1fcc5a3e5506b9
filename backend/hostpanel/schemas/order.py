"""
订单与支付相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from hostpanel.models.payment import PaymentGateway


class OrderCreate(BaseModel):
    """下单请求（名称是否为空由服务层校验）"""
    plan_id: int
    server_name: str = ""


class OrderSubmitResponse(BaseModel):
    """下单响应"""
    order_id: int
    order_no: str
    status: str
    payment_status: str
    message: str = "订单已创建，请完成支付后等待审核开通"


class OrderResponse(BaseModel):
    """订单响应"""
    id: int
    order_no: str
    plan_id: int
    server_name: str
    status: str
    payment_status: str
    pterodactyl_server_id: Optional[int] = None
    pterodactyl_identifier: Optional[str] = None
    server_simulated: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AdminOrderResponse(OrderResponse):
    """管理员视角的订单（含失败原因）"""
    user_id: int
    failure_reason: Optional[str] = None


class OrderListResponse(BaseModel):
    items: List[OrderResponse]
    total: int


class AdminOrderListResponse(BaseModel):
    items: List[AdminOrderResponse]
    total: int


class PaymentCreate(BaseModel):
    """登记支付：各支付渠道统一的载荷"""
    gateway: PaymentGateway
    reference: str = Field(..., max_length=100, description="渠道侧支付流水号")
    amount: Decimal = Field(..., gt=0, le=Decimal("99999999.99"), allow_inf_nan=False)
    currency: Optional[str] = None
    gateway_response: Optional[Dict[str, Any]] = None


class PaymentResponse(BaseModel):
    """支付记录响应"""
    id: int
    order_id: int
    payment_gateway: str
    payment_id: str
    amount: float
    currency: str
    status: str
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentListResponse(BaseModel):
    items: List[PaymentResponse]
    total: int


class ApprovePaymentRequest(BaseModel):
    """审批请求：可指定触发审批的支付记录，不指定则取最近一条待审核记录"""
    payment_id: Optional[int] = None


class ApprovalResponse(BaseModel):
    """审批/重试开通结果"""
    order_id: int
    status: str
    server_reference: int
    identifier: Optional[str] = None
    simulated: bool = False


class RejectionResponse(BaseModel):
    order_id: int
    status: str
    payment_status: str
