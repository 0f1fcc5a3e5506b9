"""
业务异常：订单生命周期中可返回给调用方的错误类型

每个异常带有机器可读的 kind 与人类可读的 message，由 main.py 中的异常处理器
统一渲染为 {"kind", "message", "request_id"}。
"""
from typing import Optional


class LifecycleError(Exception):
    """生命周期错误基类"""

    kind = "LifecycleError"
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self, is_admin: bool = False) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(LifecycleError):
    """输入不合法（套餐不可用、服务器名称为空等），不改变任何状态"""

    kind = "ValidationError"
    status_code = 422


class NotFoundError(LifecycleError):
    """订单或支付记录不存在"""

    kind = "NotFound"
    status_code = 404


class ConflictError(LifecycleError):
    """当前状态不允许该操作，或订单正被其他请求处理"""

    kind = "Conflict"
    status_code = 409


class UnauthorizedError(LifecycleError):
    """未登录或缺少管理员权限"""

    kind = "Unauthorized"
    status_code = 401


class ProvisioningError(LifecycleError):
    """
    远端面板开通失败或超时。

    detail 保留面板返回的内部信息，仅向管理员展示；
    其他调用方只看到 public_message。
    """

    kind = "ProvisioningError"
    status_code = 502
    public_message = "支付已确认，但服务器开通失败，请联系客服处理"

    def __init__(self, detail: str, order_id: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        self.order_id = order_id

    def to_dict(self, is_admin: bool = False) -> dict:
        body = {
            "kind": self.kind,
            "message": self.detail if is_admin else self.public_message,
        }
        if self.order_id is not None:
            body["order_id"] = self.order_id
        return body
