"""
套餐模型
"""
from sqlalchemy import Column, Integer, String, Text, Numeric, Boolean, DateTime
from sqlalchemy.sql import func
from hostpanel.core.database import Base


class Plan(Base):
    """套餐表：内存/磁盘/CPU 资源上限与月价格，运行期只读"""
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    memory = Column(Integer, nullable=False)  # MB
    disk = Column(Integer, nullable=False)  # GB
    cpu = Column(Integer, nullable=False)  # 百分比，100 = 1 核
    price = Column(Numeric(10, 2), nullable=False)  # 月价格
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
