"""
服务器订单模型
"""
import enum

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from hostpanel.core.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# 进入这些状态后不再允许任何状态迁移
TERMINAL_STATUSES = {OrderStatus.ACTIVE.value, OrderStatus.CANCELLED.value}


class ServerOrder(Base):
    """服务器订单表"""
    __tablename__ = "server_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_no = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    server_name = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    # 仅在开通成功（status=active）时写入
    pterodactyl_server_id = Column(Integer, nullable=True)
    pterodactyl_identifier = Column(String(32), nullable=True)
    server_simulated = Column(Boolean, default=False)  # 面板未配置时的模拟开通
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 关系
    user = relationship("User", back_populates="orders")
    plan = relationship("Plan")
    payments = relationship("Payment", back_populates="order", order_by="Payment.id")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
