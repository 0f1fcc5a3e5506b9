"""
管理员审批API：审批/拒绝支付、重试开通、待审核队列
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from hostpanel.api.deps import get_actor, get_lifecycle_service, require_admin
from hostpanel.models.order import PaymentStatus
from hostpanel.schemas.auth import UserResponse
from hostpanel.schemas.order import (
    AdminOrderListResponse,
    AdminOrderResponse,
    ApprovalResponse,
    ApprovePaymentRequest,
    PaymentListResponse,
    PaymentResponse,
    RejectionResponse,
)
from hostpanel.services.order_lifecycle import ApprovalResult, OrderLifecycleService

router = APIRouter()


def _approval_response(result: ApprovalResult) -> ApprovalResponse:
    return ApprovalResponse(
        order_id=result.order_id,
        status=result.status,
        server_reference=result.server_reference,
        identifier=result.identifier,
        simulated=result.simulated,
    )


@router.get("/orders", response_model=AdminOrderListResponse)
async def list_orders(
    payment_status: PaymentStatus = Query(PaymentStatus.PENDING, description="按支付状态筛选"),
    admin: UserResponse = Depends(require_admin),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """待审核队列（默认 payment_status=pending）"""
    orders = await service.list_orders_by_payment_status(payment_status)
    return AdminOrderListResponse(
        items=[AdminOrderResponse.model_validate(o) for o in orders],
        total=len(orders),
    )


@router.get("/orders/{order_id}", response_model=AdminOrderResponse)
async def get_order(
    order_id: int,
    admin: UserResponse = Depends(require_admin),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """订单详情（含失败原因）"""
    return await service.get_order(order_id)


@router.get("/orders/{order_id}/payments", response_model=PaymentListResponse)
async def list_order_payments(
    order_id: int,
    admin: UserResponse = Depends(require_admin),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """订单的全部支付记录"""
    payments = await service.list_payments(order_id)
    return PaymentListResponse(
        items=[PaymentResponse.model_validate(p) for p in payments],
        total=len(payments),
    )


@router.post("/orders/{order_id}/approve", response_model=ApprovalResponse)
async def approve_payment(
    order_id: int,
    request: Request,
    body: Optional[ApprovePaymentRequest] = None,
    admin: UserResponse = Depends(require_admin),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """审批支付并开通服务器"""
    result = await service.approve_payment(order_id, get_actor(request, admin), payment_id=body.payment_id if body else None)
    return _approval_response(result)


@router.post("/orders/{order_id}/reject", response_model=RejectionResponse)
async def reject_payment(
    order_id: int,
    request: Request,
    admin: UserResponse = Depends(require_admin),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """拒绝支付并取消订单"""
    order = await service.reject_payment(order_id, get_actor(request, admin))
    return RejectionResponse(order_id=order.id, status=order.status, payment_status=order.payment_status)


@router.post("/orders/{order_id}/retry", response_model=ApprovalResponse)
async def retry_provisioning(
    order_id: int,
    request: Request,
    admin: UserResponse = Depends(require_admin),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """对开通失败的订单重新开通"""
    result = await service.retry_provisioning(order_id, get_actor(request, admin))
    return _approval_response(result)
