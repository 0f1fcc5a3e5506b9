"""
开通适配器：调用 Pterodactyl 面板 Application API 创建服务器

每次调用只发一次请求，不重试、不保存状态；重试策略由订单生命周期服务决定。
面板地址或 API Key 未配置时返回模拟结果（simulated=True），用于开发与演示环境。
"""
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from hostpanel.core.config import settings
from hostpanel.core.errors import ProvisioningError
from hostpanel.models.order import ServerOrder
from hostpanel.models.plan import Plan

logger = logging.getLogger(__name__)

SERVERS_ENDPOINT = "/api/application/servers"


@dataclass
class ProvisioningResult:
    """开通结果"""
    server_id: int
    identifier: Optional[str] = None
    simulated: bool = False


class PterodactylProvisioner:
    """Pterodactyl 开通适配器"""

    def __init__(
        self,
        panel_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.panel_url = (settings.PTERO_PANEL_URL if panel_url is None else panel_url).rstrip("/")
        self.api_key = settings.PTERO_API_KEY if api_key is None else api_key
        self.timeout = timeout or settings.PTERO_HTTP_TIMEOUT
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.panel_url.strip() and self.api_key.strip())

    def build_payload(self, order: ServerOrder, plan: Plan, owner_id: int) -> Dict[str, Any]:
        """将订单与套餐映射为面板创建服务器的请求体（磁盘 GB 换算为 MB）"""
        return {
            "name": order.server_name,
            "user": owner_id,
            "external_id": f"order-{order.id}",
            "egg": settings.PTERO_EGG_ID,
            "docker_image": settings.PTERO_DOCKER_IMAGE,
            "startup": settings.PTERO_STARTUP,
            "environment": dict(settings.PTERO_ENVIRONMENT),
            "limits": {
                "memory": int(plan.memory),
                "swap": 0,
                "disk": int(plan.disk) * 1024,
                "io": settings.PTERO_IO_WEIGHT,
                "cpu": int(plan.cpu),
            },
            "feature_limits": {
                "databases": settings.PTERO_FEATURE_DATABASES,
                "allocations": settings.PTERO_FEATURE_ALLOCATIONS,
                "backups": settings.PTERO_FEATURE_BACKUPS,
            },
            "deploy": {
                "locations": [settings.PTERO_LOCATION_ID],
                "dedicated_ip": False,
                "port_range": [],
            },
        }

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def provision(
        self,
        order: ServerOrder,
        plan: Plan,
        owner_id: Optional[int] = None,
    ) -> ProvisioningResult:
        """为订单创建服务器；失败抛 ProvisioningError"""
        if not self.configured:
            server_id = secrets.randbelow(10000) + 1000
            logger.warning(
                "Pterodactyl 未配置，订单 %s 使用模拟开通，server_id=%s",
                order.id, server_id, extra={"order_id": order.id},
            )
            return ProvisioningResult(server_id=server_id, simulated=True)

        owner = owner_id if owner_id is not None else settings.PTERO_DEFAULT_OWNER_ID
        payload = self.build_payload(order, plan, owner)
        logger.info("向面板申请创建服务器 order_id=%s name=%s", order.id, order.server_name)

        try:
            async with httpx.AsyncClient(
                base_url=self.panel_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(SERVERS_ENDPOINT, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise ProvisioningError(f"面板请求超时（{self.timeout}s）: {e!r}", order_id=order.id) from e
        except httpx.HTTPError as e:
            raise ProvisioningError(f"面板请求失败: {e!r}", order_id=order.id) from e

        if response.status_code >= 400:
            raise ProvisioningError(
                f"面板返回 HTTP {response.status_code}: {_panel_error_detail(response)}",
                order_id=order.id,
            )

        try:
            attributes = response.json()["attributes"]
            server_id = int(attributes["id"])
        except (ValueError, KeyError, TypeError) as e:
            raise ProvisioningError(f"面板响应格式不正确: {response.text[:200]}", order_id=order.id) from e

        return ProvisioningResult(
            server_id=server_id,
            identifier=attributes.get("identifier"),
            simulated=False,
        )


def _panel_error_detail(response: httpx.Response) -> str:
    """提取面板错误信息：{"errors": [{"code", "detail"}]}"""
    try:
        errors = response.json().get("errors") or []
        if errors:
            first = errors[0]
            return f"{first.get('code', '')} {first.get('detail', '')}".strip()
    except (ValueError, AttributeError):
        pass
    return response.text[:200]


def get_provisioner() -> PterodactylProvisioner:
    """FastAPI 依赖：按当前配置构造开通适配器"""
    return PterodactylProvisioner()
