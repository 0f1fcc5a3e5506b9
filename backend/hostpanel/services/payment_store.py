"""
支付记录存储：按订单追加、查询支付尝试，单行更新状态

所有操作只 flush 不 commit，由订单生命周期服务决定提交时机，
使订单状态与支付状态在同一事务内生效。
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hostpanel.models.payment import Payment, PaymentRecordStatus


class PaymentRecordStore:
    """支付记录存储"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, payment: Payment) -> Payment:
        """追加一条支付记录"""
        self.db.add(payment)
        await self.db.flush()
        return payment

    async def get(self, order_id: int) -> List[Payment]:
        """订单下所有支付记录，最新在前"""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.order_id == order_id)
            .order_by(Payment.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def latest_pending(self, order_id: int) -> Optional[Payment]:
        """订单最近一条待审核支付"""
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.order_id == order_id,
                Payment.status == PaymentRecordStatus.PENDING.value,
            )
            .order_by(Payment.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_status(
        self,
        payment_id: int,
        status: PaymentRecordStatus,
        expected: Optional[PaymentRecordStatus] = None,
    ) -> bool:
        """
        更新单条支付状态。指定 expected 时为条件更新，
        当前状态不符返回 False。进入终态时写入 completed_at。
        """
        values = {"status": status.value}
        if status != PaymentRecordStatus.PENDING:
            values["completed_at"] = datetime.now(timezone.utc)
        stmt = update(Payment).where(Payment.id == payment_id)
        if expected is not None:
            stmt = stmt.where(Payment.status == expected.value)
        result = await self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def reject_pending(self, order_id: int) -> int:
        """将订单下所有待审核支付标记为已拒绝，返回影响行数"""
        result = await self.db.execute(
            update(Payment)
            .where(
                Payment.order_id == order_id,
                Payment.status == PaymentRecordStatus.PENDING.value,
            )
            .values(
                status=PaymentRecordStatus.REJECTED.value,
                completed_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
