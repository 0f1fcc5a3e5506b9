"""
用户模型
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from hostpanel.core.database import Base


class User(Base):
    """用户表"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(100), unique=True, nullable=False, index=True)
    # 数据库列名为 hashed_password，代码中仍用 password_hash
    password_hash = Column("hashed_password", String(255), nullable=False)
    role = Column(String(20), default="user")  # user, admin
    panel_user_id = Column(Integer, nullable=True)  # Pterodactyl 面板中的用户 ID
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 关系
    orders = relationship("ServerOrder", back_populates="user")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
