"""
通用依赖：当前用户、管理员校验、客户端 IP、生命周期服务
"""
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from hostpanel.core.config import settings
from hostpanel.core.database import get_db
from hostpanel.core.errors import UnauthorizedError
from hostpanel.schemas.auth import UserResponse
from hostpanel.services.auth_service import AuthService
from hostpanel.services.order_lifecycle import Actor, OrderLifecycleService
from hostpanel.services.order_lock import OrderLock
from hostpanel.services.provisioning import PterodactylProvisioner, get_provisioner

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login", auto_error=False)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """获取当前用户信息"""
    if not token:
        raise UnauthorizedError("未提供认证凭据")
    auth_service = AuthService(db)
    user = await auth_service.get_current_user(token)
    return UserResponse.model_validate(user)


async def get_current_active_user(
    current_user: UserResponse = Depends(get_current_user),
) -> UserResponse:
    """获取当前活跃用户"""
    if not current_user.is_active:
        raise UnauthorizedError("用户未激活", status_code=403)
    return current_user


async def require_admin(
    request: Request,
    current_user: UserResponse = Depends(get_current_active_user),
) -> UserResponse:
    """管理员审批入口：只校验角色，不含业务逻辑"""
    if current_user.role != "admin":
        raise UnauthorizedError("需要管理员权限", status_code=403)
    request.state.is_admin = True
    return current_user


def get_client_ip(request: Request) -> str | None:
    """客户端 IP，优先取反向代理头"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_order_lock() -> OrderLock:
    return OrderLock()


def get_actor(request: Request, user: UserResponse) -> Actor:
    return Actor.from_user(user, ip=get_client_ip(request), request_id=getattr(request.state, "request_id", None))


async def get_lifecycle_service(
    db: AsyncSession = Depends(get_db),
    provisioner: PterodactylProvisioner = Depends(get_provisioner),
    order_lock: OrderLock = Depends(get_order_lock),
) -> OrderLifecycleService:
    return OrderLifecycleService(db, provisioner=provisioner, order_lock=order_lock)
