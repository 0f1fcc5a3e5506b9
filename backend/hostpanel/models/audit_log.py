"""
操作审计日志：下单、登记支付、审批、拒绝、开通成功/失败等关键操作
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from hostpanel.core.database import Base


class AuditLog(Base):
    """审计日志表"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)  # 支付回调等自动操作为空
    action = Column(String(64), nullable=False, index=True)  # submit_order, approve_payment, provisioning_failed 等
    resource_type = Column(String(32), nullable=True, index=True)  # order, payment
    resource_id = Column(String(64), nullable=True, index=True)
    detail = Column(Text, nullable=True)  # JSON 或简短描述
    ip = Column(String(64), nullable=True)
    request_id = Column(String(64), nullable=True, index=True)  # 链路追踪，与 X-Request-ID 一致
    created_at = Column(DateTime(timezone=True), server_default=func.now())
