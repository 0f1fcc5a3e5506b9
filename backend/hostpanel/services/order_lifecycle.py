"""
订单生命周期服务：订单状态机、支付审批与服务器开通编排

状态（status / payment_status）:
    pending/pending    已下单，等待支付与审核
    pending/approved   已审批，开通进行中（仅存在于一次审批调用内部）
    active/approved    开通成功，终态
    failed/approved    开通失败，可由管理员重试
    cancelled/rejected 支付被拒绝，终态

所有状态迁移都通过带当前状态条件的 UPDATE 完成，影响行数不为 1 即视为冲突；
开通调用前另加 Redis 订单锁，二者保证同一订单至多开通一次。
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hostpanel.core.config import settings
from hostpanel.core.errors import (
    ConflictError,
    NotFoundError,
    ProvisioningError,
    UnauthorizedError,
    ValidationError,
)
from hostpanel.models.order import OrderStatus, PaymentStatus, ServerOrder
from hostpanel.models.payment import Payment, PaymentGateway, PaymentRecordStatus
from hostpanel.models.plan import Plan
from hostpanel.models.user import User
from hostpanel.services.audit_service import log_audit
from hostpanel.services.order_lock import OrderLock
from hostpanel.services.payment_store import PaymentRecordStore
from hostpanel.services.plan_service import PlanService
from hostpanel.services.provisioning import PterodactylProvisioner, ProvisioningResult

logger = logging.getLogger(__name__)

SERVER_NAME_MAX_LENGTH = 100
PAYMENT_REFERENCE_MAX_LENGTH = 100
# payments.amount 为 Numeric(10, 2)
MAX_PAYMENT_AMOUNT = Decimal("99999999.99")


@dataclass
class Actor:
    """操作者：登录用户或已独立验签的支付渠道回调"""
    user_id: Optional[int] = None
    is_admin: bool = False
    gateway: Optional[str] = None
    gateway_verified: bool = False
    ip: Optional[str] = None
    request_id: Optional[str] = None

    @classmethod
    def from_user(cls, user: Any, ip: Optional[str] = None, request_id: Optional[str] = None) -> "Actor":
        return cls(user_id=user.id, is_admin=user.role == "admin", ip=ip, request_id=request_id)

    @classmethod
    def verified_gateway(cls, gateway: PaymentGateway, request_id: Optional[str] = None) -> "Actor":
        """由已完成签名校验的渠道回调构造；未校验的回调不得使用"""
        return cls(gateway=gateway.value, gateway_verified=True, request_id=request_id)

    @property
    def can_approve(self) -> bool:
        return self.is_admin or self.gateway_verified


@dataclass
class ApprovalResult:
    """审批/重试开通的结果"""
    order_id: int
    status: str
    server_reference: int
    identifier: Optional[str] = None
    simulated: bool = False
    already_active: bool = False


class OrderLifecycleService:
    """订单生命周期服务类"""

    def __init__(
        self,
        db: AsyncSession,
        provisioner: Optional[PterodactylProvisioner] = None,
        order_lock: Optional[OrderLock] = None,
        provisioning_timeout: Optional[float] = None,
    ):
        self.db = db
        self.payments = PaymentRecordStore(db)
        self.plans = PlanService(db)
        self.provisioner = provisioner or PterodactylProvisioner()
        self.order_lock = order_lock or OrderLock()
        self.provisioning_timeout = provisioning_timeout or settings.PROVISIONING_TIMEOUT_SECONDS

    # ---------- 查询 ----------

    async def get_order(self, order_id: int, user_id: Optional[int] = None) -> ServerOrder:
        """获取订单；指定 user_id 时只返回该用户的订单"""
        order = await self.db.get(ServerOrder, order_id, populate_existing=True)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise NotFoundError("订单不存在")
        return order

    async def list_orders(self, user_id: int) -> List[ServerOrder]:
        """用户的订单，最新在前"""
        result = await self.db.execute(
            select(ServerOrder)
            .where(ServerOrder.user_id == user_id)
            .order_by(ServerOrder.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_orders_by_payment_status(
        self,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
    ) -> List[ServerOrder]:
        """按支付状态列出订单（管理员待审核队列）"""
        stmt = select(ServerOrder).where(ServerOrder.payment_status == payment_status.value)
        if payment_status == PaymentStatus.PENDING:
            stmt = stmt.where(ServerOrder.status == OrderStatus.PENDING.value)
        result = await self.db.execute(
            stmt.order_by(ServerOrder.id.desc()).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_payments(self, order_id: int, user_id: Optional[int] = None) -> List[Payment]:
        await self.get_order(order_id, user_id=user_id)
        return await self.payments.get(order_id)

    # ---------- 下单与登记支付 ----------

    async def submit_order(self, actor: Actor, plan_id: int, server_name: str) -> ServerOrder:
        """创建订单，初始为 pending/pending"""
        if actor.user_id is None:
            raise UnauthorizedError("请先登录")
        name = (server_name or "").strip()
        if not name:
            raise ValidationError("服务器名称不能为空")
        if len(name) > SERVER_NAME_MAX_LENGTH:
            raise ValidationError(f"服务器名称不能超过 {SERVER_NAME_MAX_LENGTH} 个字符")
        plan = await self.plans.get_active_plan(plan_id)
        if plan is None:
            raise ValidationError("套餐不存在或已下架")

        order = ServerOrder(
            order_no=_generate_order_no(),
            user_id=actor.user_id,
            plan_id=plan.id,
            server_name=name,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
        )
        self.db.add(order)
        await self.db.commit()
        await self.db.refresh(order)

        logger.info("订单已创建 order_id=%s user_id=%s plan_id=%s", order.id, actor.user_id, plan.id)
        await self._audit(actor, "submit_order", order.id, {"plan_id": plan.id, "server_name": name})
        return order

    async def record_payment(
        self,
        order_id: int,
        gateway: str,
        reference: str,
        amount: Any,
        currency: Optional[str] = None,
        gateway_response: Optional[Dict[str, Any]] = None,
        actor: Optional[Actor] = None,
    ) -> Payment:
        """登记一次支付尝试（pending），不改变订单状态"""
        owner_id = actor.user_id if actor is not None and not actor.is_admin else None
        order = await self.get_order(order_id, user_id=owner_id)

        try:
            gateway_value = PaymentGateway(gateway).value
        except ValueError:
            raise ValidationError(f"不支持的支付渠道: {gateway}")
        reference = (reference or "").strip()
        if not reference:
            raise ValidationError("支付流水号不能为空")
        if len(reference) > PAYMENT_REFERENCE_MAX_LENGTH:
            raise ValidationError(f"支付流水号不能超过 {PAYMENT_REFERENCE_MAX_LENGTH} 个字符")
        try:
            amount_value = Decimal(str(amount)).quantize(Decimal("0.01"))
            if not amount_value.is_finite():
                raise ValidationError("支付金额格式不正确")
        except (InvalidOperation, ValueError):
            raise ValidationError("支付金额格式不正确")
        if amount_value <= 0:
            raise ValidationError("支付金额必须大于 0")
        if amount_value > MAX_PAYMENT_AMOUNT:
            raise ValidationError(f"支付金额不能超过 {MAX_PAYMENT_AMOUNT}")
        currency_value = (currency or settings.DEFAULT_CURRENCY).strip().upper()
        if len(currency_value) != 3 or not currency_value.isalpha():
            raise ValidationError("币种必须为 3 位字母代码")

        if order.payment_status != PaymentStatus.PENDING.value or order.status != OrderStatus.PENDING.value:
            raise ConflictError("订单已不在待支付状态，无法登记支付")

        payment = Payment(
            order_id=order.id,
            payment_gateway=gateway_value,
            payment_id=reference,
            amount=amount_value,
            currency=currency_value,
            status=PaymentRecordStatus.PENDING.value,
            gateway_response=gateway_response,
        )
        await self.payments.append(payment)
        await self.db.commit()
        await self.db.refresh(payment)

        logger.info(
            "支付已登记 order_id=%s payment_id=%s gateway=%s amount=%s %s",
            order.id, payment.id, gateway_value, amount_value, currency_value,
        )
        await self._audit(
            actor, "record_payment", order.id,
            {"payment_id": payment.id, "gateway": gateway_value, "reference": reference,
             "amount": str(amount_value), "currency": currency_value},
        )
        return payment

    # ---------- 审批 / 拒绝 / 重试 ----------

    async def approve_payment(
        self,
        order_id: int,
        actor: Actor,
        payment_id: Optional[int] = None,
    ) -> ApprovalResult:
        """
        审批支付并同步开通服务器。

        结束时订单必为 active 或 failed；对已 active 的订单重复审批直接返回
        已有服务器，不会再次开通。审批进行中或锁被占用时返回 Conflict。
        """
        if not actor.can_approve:
            raise UnauthorizedError("需要管理员权限", status_code=403)

        order = await self.get_order(order_id)
        if order.status == OrderStatus.ACTIVE.value:
            return _existing_result(order)
        _ensure_approvable(order)

        token = await self.order_lock.acquire(order.id)
        if token is None:
            raise ConflictError("订单正在被其他请求处理，请稍后刷新")
        try:
            order = await self.get_order(order_id)
            if order.status == OrderStatus.ACTIVE.value:
                return _existing_result(order)
            _ensure_approvable(order)
            payment = await self._resolve_payment(order, payment_id)

            claimed = await self._transition(
                order.id,
                expected={"status": OrderStatus.PENDING, "payment_status": PaymentStatus.PENDING},
                values={"payment_status": PaymentStatus.APPROVED.value},
            )
            if not claimed:
                await self.db.rollback()
                order = await self.get_order(order_id)
                if order.status == OrderStatus.ACTIVE.value:
                    return _existing_result(order)
                raise ConflictError("订单状态已变化，审批未生效")
            if payment is not None:
                marked = await self.payments.set_status(
                    payment.id, PaymentRecordStatus.APPROVED, expected=PaymentRecordStatus.PENDING
                )
                if not marked:
                    await self.db.rollback()
                    raise ConflictError("支付记录状态已变化，审批未生效")
            await self.db.commit()
            await self.db.refresh(order)

            logger.info(
                "支付已审批 order_id=%s payment_id=%s actor=%s",
                order.id, payment.id if payment else None, actor.user_id or actor.gateway,
            )
            await self._audit(
                actor, "approve_payment", order.id,
                {"payment_id": payment.id if payment else None, "gateway": actor.gateway},
            )
            return await self._provision(order, actor)
        finally:
            await self.order_lock.release(order_id, token)

    async def reject_payment(self, order_id: int, actor: Actor) -> ServerOrder:
        """拒绝支付并取消订单；对已取消订单重复调用为无操作"""
        if not actor.is_admin:
            raise UnauthorizedError("需要管理员权限", status_code=403)

        order = await self.get_order(order_id)
        if order.status == OrderStatus.CANCELLED.value:
            return order
        if order.status != OrderStatus.PENDING.value or order.payment_status != PaymentStatus.PENDING.value:
            raise ConflictError(f"订单当前状态为 {order.status}/{order.payment_status}，无法拒绝")

        rejected = await self._transition(
            order.id,
            expected={"status": OrderStatus.PENDING, "payment_status": PaymentStatus.PENDING},
            values={
                "payment_status": PaymentStatus.REJECTED.value,
                "status": OrderStatus.CANCELLED.value,
            },
        )
        if not rejected:
            await self.db.rollback()
            order = await self.get_order(order_id)
            if order.status == OrderStatus.CANCELLED.value:
                return order
            raise ConflictError("订单状态已变化，拒绝未生效")
        closed_payments = await self.payments.reject_pending(order.id)
        await self.db.commit()
        await self.db.refresh(order)

        logger.info("支付已拒绝，订单取消 order_id=%s", order.id)
        await self._audit(actor, "reject_payment", order.id, {"rejected_payments": closed_payments})
        return order

    async def retry_provisioning(self, order_id: int, actor: Actor) -> ApprovalResult:
        """
        重新开通：failed/approved 的订单，或停留在 pending/approved 超过订单锁
        TTL 的订单（原审批请求已中断，例如进程退出）
        """
        if not actor.is_admin:
            raise UnauthorizedError("需要管理员权限", status_code=403)

        order = await self.get_order(order_id)
        if order.status == OrderStatus.ACTIVE.value:
            return _existing_result(order)
        if order.payment_status != PaymentStatus.APPROVED.value or order.status not in (
            OrderStatus.FAILED.value,
            OrderStatus.PENDING.value,
        ):
            raise ConflictError("只有开通失败或开通中断的订单可以重试")

        token = await self.order_lock.acquire(order.id)
        if token is None:
            raise ConflictError("订单正在被其他请求处理，请稍后刷新")
        try:
            if order.status == OrderStatus.FAILED.value:
                reopened = await self._transition(
                    order.id,
                    expected={"status": OrderStatus.FAILED, "payment_status": PaymentStatus.APPROVED},
                    values={"status": OrderStatus.PENDING.value, "failure_reason": None},
                )
            else:
                # 写入 updated_at 即认领该订单，并发的重试只有一个能成功
                stalled_before = datetime.now(timezone.utc) - timedelta(seconds=self.order_lock.ttl_seconds)
                reopened = await self._transition(
                    order.id,
                    expected={"status": OrderStatus.PENDING, "payment_status": PaymentStatus.APPROVED},
                    values={"failure_reason": None},
                    updated_before=stalled_before,
                )
            if not reopened:
                await self.db.rollback()
                raise ConflictError("订单仍在开通中或状态已变化，重试未生效")
            await self.db.commit()
            await self.db.refresh(order)

            logger.info("重新开通 order_id=%s", order.id)
            await self._audit(actor, "retry_provisioning", order.id)
            return await self._provision(order, actor)
        finally:
            await self.order_lock.release(order_id, token)

    # ---------- 内部 ----------

    async def _resolve_payment(self, order: ServerOrder, payment_id: Optional[int]) -> Optional[Payment]:
        """确定触发审批的支付记录；未登记任何支付（线下付款）时返回 None"""
        if payment_id is None:
            return await self.payments.latest_pending(order.id)
        payment = await self.payments.get_payment(payment_id)
        if payment is None or payment.order_id != order.id:
            raise NotFoundError("支付记录不存在")
        if payment.status != PaymentRecordStatus.PENDING.value:
            raise ConflictError("该支付记录已处理")
        return payment

    async def _transition(
        self,
        order_id: int,
        expected: Dict[str, Any],
        values: Dict[str, Any],
        updated_before: Optional[datetime] = None,
    ) -> bool:
        """条件更新订单：仅当当前状态与 expected 一致（且 updated_at 早于 updated_before）时写入 values"""
        stmt = update(ServerOrder).where(ServerOrder.id == order_id)
        for field, state in expected.items():
            stmt = stmt.where(getattr(ServerOrder, field) == state.value)
        if updated_before is not None:
            stmt = stmt.where(ServerOrder.updated_at < updated_before)
        result = await self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _provision(self, order: ServerOrder, actor: Actor) -> ApprovalResult:
        """
        开通并落库。开通调用一旦发出就运行到结束：调用方被取消（客户端断开等）时，
        先等待结果写入订单（active 或 failed），再向上传播取消。
        """
        settle = asyncio.ensure_future(self._provision_and_record(order, actor))
        try:
            return await asyncio.shield(settle)
        except asyncio.CancelledError:
            logger.warning(
                "请求已取消，等待开通结果落库 order_id=%s", order.id, extra={"order_id": order.id}
            )
            await asyncio.wait({settle})
            if not settle.cancelled():
                # 结果已由 _provision_and_record 落库；取出异常以免事件循环报告未处理
                settle.exception()
            raise

    async def _provision_and_record(self, order: ServerOrder, actor: Actor) -> ApprovalResult:
        """调用面板开通；订单此时为 pending/approved，结束时为 active 或 failed"""
        plan = await self.db.get(Plan, order.plan_id)
        if plan is None:
            error = ProvisioningError(f"套餐 {order.plan_id} 不存在", order_id=order.id)
            await self._mark_failed(order, error, actor)
            raise error
        owner_id = await self._panel_owner_id(order.user_id)

        try:
            result: ProvisioningResult = await asyncio.wait_for(
                self.provisioner.provision(order, plan, owner_id=owner_id),
                timeout=self.provisioning_timeout,
            )
        except asyncio.TimeoutError as e:
            error = ProvisioningError(f"开通超时（{self.provisioning_timeout}s）", order_id=order.id)
            await self._mark_failed(order, error, actor)
            raise error from e
        except ProvisioningError as e:
            e.order_id = order.id
            await self._mark_failed(order, e, actor)
            raise
        except Exception as e:
            logger.exception("开通适配器异常 order_id=%s", order.id)
            error = ProvisioningError(f"开通异常: {e!r}", order_id=order.id)
            await self._mark_failed(order, error, actor)
            raise error from e

        activated = await self._transition(
            order.id,
            expected={"status": OrderStatus.PENDING, "payment_status": PaymentStatus.APPROVED},
            values={
                "status": OrderStatus.ACTIVE.value,
                "pterodactyl_server_id": result.server_id,
                "pterodactyl_identifier": result.identifier,
                "server_simulated": result.simulated,
                "failure_reason": None,
            },
        )
        if not activated:
            order_id = order.id
            await self.db.rollback()
            logger.error(
                "服务器已创建但订单状态更新失败 order_id=%s server_id=%s，需人工核对",
                order_id, result.server_id, extra={"order_id": order_id},
            )
            raise ConflictError("订单状态已变化，开通结果未写入")
        await self.db.commit()
        await self.db.refresh(order)

        logger.info(
            "服务器开通成功 order_id=%s server_id=%s simulated=%s",
            order.id, result.server_id, result.simulated,
        )
        await self._audit(
            actor, "provisioning_succeeded", order.id,
            {"server_id": result.server_id, "identifier": result.identifier, "simulated": result.simulated},
        )
        return ApprovalResult(
            order_id=order.id,
            status=order.status,
            server_reference=result.server_id,
            identifier=result.identifier,
            simulated=result.simulated,
        )

    async def _mark_failed(self, order: ServerOrder, error: ProvisioningError, actor: Actor) -> None:
        """开通失败：订单置为 failed，payment_status 保持 approved，保留失败原因"""
        reason = error.detail[:1000]
        await self._transition(
            order.id,
            expected={"status": OrderStatus.PENDING, "payment_status": PaymentStatus.APPROVED},
            values={"status": OrderStatus.FAILED.value, "failure_reason": reason},
        )
        await self.db.commit()
        await self.db.refresh(order)
        logger.error("服务器开通失败 order_id=%s: %s", order.id, reason, extra={"order_id": order.id})
        await self._audit(actor, "provisioning_failed", order.id, {"reason": reason})

    async def _panel_owner_id(self, user_id: int) -> Optional[int]:
        user = await self.db.get(User, user_id)
        return user.panel_user_id if user is not None else None

    async def _audit(
        self,
        actor: Optional[Actor],
        action: str,
        order_id: int,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        await log_audit(
            self.db,
            actor.user_id if actor else None,
            action,
            "order",
            str(order_id),
            detail,
            actor.ip if actor else None,
            actor.request_id if actor else None,
        )


def _generate_order_no() -> str:
    return f"ORD{datetime.now().strftime('%Y%m%d')}{uuid.uuid4().hex[:8].upper()}"


def _ensure_approvable(order: ServerOrder) -> None:
    if order.is_terminal or order.payment_status == PaymentStatus.REJECTED.value:
        raise ConflictError(f"订单已处于终态 {order.status}，无法审批")
    if order.status == OrderStatus.FAILED.value:
        raise ConflictError("订单开通失败，请使用重试开通")
    if order.payment_status == PaymentStatus.APPROVED.value:
        raise ConflictError("订单支付已审批，服务器正在开通中")


def _existing_result(order: ServerOrder) -> ApprovalResult:
    return ApprovalResult(
        order_id=order.id,
        status=order.status,
        server_reference=order.pterodactyl_server_id,
        identifier=order.pterodactyl_identifier,
        simulated=bool(order.server_simulated),
        already_active=True,
    )
