"""
客户订单API：下单、查看订单、登记支付
"""
from fastapi import APIRouter, Depends, Request, status

from hostpanel.api.deps import get_actor, get_current_active_user, get_lifecycle_service
from hostpanel.schemas.auth import UserResponse
from hostpanel.schemas.order import (
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    OrderSubmitResponse,
    PaymentCreate,
    PaymentListResponse,
    PaymentResponse,
)
from hostpanel.services.order_lifecycle import OrderLifecycleService

router = APIRouter()


@router.post("", response_model=OrderSubmitResponse, status_code=status.HTTP_201_CREATED)
async def submit_order(
    body: OrderCreate,
    request: Request,
    current_user: UserResponse = Depends(get_current_active_user),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """下单：创建待支付订单"""
    order = await service.submit_order(get_actor(request, current_user), body.plan_id, body.server_name)
    return OrderSubmitResponse(
        order_id=order.id,
        order_no=order.order_no,
        status=order.status,
        payment_status=order.payment_status,
    )


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    current_user: UserResponse = Depends(get_current_active_user),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """当前用户的订单"""
    orders = await service.list_orders(current_user.id)
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=len(orders),
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_my_order(
    order_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """订单详情（仅本人）"""
    return await service.get_order(order_id, user_id=current_user.id)


@router.post("/{order_id}/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(
    order_id: int,
    body: PaymentCreate,
    request: Request,
    current_user: UserResponse = Depends(get_current_active_user),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """登记支付：支付前端拿到渠道流水号后调用，等待管理员审核"""
    return await service.record_payment(
        order_id,
        body.gateway.value,
        body.reference,
        body.amount,
        body.currency,
        body.gateway_response,
        actor=get_actor(request, current_user),
    )


@router.get("/{order_id}/payments", response_model=PaymentListResponse)
async def list_my_payments(
    order_id: int,
    current_user: UserResponse = Depends(get_current_active_user),
    service: OrderLifecycleService = Depends(get_lifecycle_service),
):
    """订单的支付记录（仅本人）"""
    payments = await service.list_payments(order_id, user_id=current_user.id)
    return PaymentListResponse(
        items=[PaymentResponse.model_validate(p) for p in payments],
        total=len(payments),
    )
