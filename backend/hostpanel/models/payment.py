"""
支付记录模型：每个订单可有多条支付尝试
"""
import enum

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from hostpanel.core.database import Base


class PaymentGateway(str, enum.Enum):
    """支付渠道，各渠道只产生一个不透明的支付流水号"""
    PAYPAL = "paypal"
    RAZORPAY = "razorpay"
    UPI = "upi"
    DISCORD = "discord"


class PaymentRecordStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Payment(Base):
    """支付记录表"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("server_orders.id"), nullable=False, index=True)
    payment_gateway = Column(String(20), nullable=False)  # paypal, razorpay, upi, discord
    payment_id = Column(String(100), nullable=False)  # 渠道侧流水号
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(20), nullable=False, default=PaymentRecordStatus.PENDING.value)
    gateway_response = Column(JSON, nullable=True)  # 渠道原始回执
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # 关系
    order = relationship("ServerOrder", back_populates="payments")
