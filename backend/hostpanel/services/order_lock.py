"""
订单级咨询锁：基于 Redis SET NX PX，保证同一订单同一时刻只有一个审批/开通流程

Redis 未配置或不可用时锁退化为总是成功（记录警告），此时由数据库上
payment_status 的条件更新保证开通至多执行一次。
"""
import asyncio
import logging
import uuid
from typing import Optional

from hostpanel.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None

# 仅当值与自己持有的 token 一致时才删除，避免误删他人重新获取的锁
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def _get_redis():
    """获取 Redis 客户端（懒加载）"""
    global _redis_client
    if _redis_client is None:
        if not getattr(settings, "REDIS_URL", None) or not settings.REDIS_URL.strip():
            return None
        try:
            import redis
            _redis_client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
            )
        except Exception as e:
            logger.warning("Redis 连接失败，订单锁将不生效: %s", e)
    return _redis_client


class OrderLock:
    """按订单 ID 加锁"""

    def __init__(self, client=None, ttl_seconds: Optional[int] = None, key_prefix: Optional[str] = None):
        self._client = client
        self.ttl_seconds = ttl_seconds or settings.ORDER_LOCK_TTL_SECONDS
        self.key_prefix = key_prefix or settings.ORDER_LOCK_KEY_PREFIX

    def _redis(self):
        return self._client if self._client is not None else _get_redis()

    def key(self, order_id: int) -> str:
        return f"{self.key_prefix}{order_id}"

    async def acquire(self, order_id: int) -> Optional[str]:
        """
        尝试获取锁，不等待。成功返回 token，已被占用返回 None。
        Redis 不可用时返回空字符串 token（视为获取成功）。
        """
        r = self._redis()
        if not r:
            logger.warning("Redis 未配置，订单锁退化为数据库条件更新", extra={"order_id": order_id})
            return ""
        token = uuid.uuid4().hex
        try:
            ok = await asyncio.to_thread(
                r.set, self.key(order_id), token, nx=True, px=self.ttl_seconds * 1000
            )
        except Exception as e:
            logger.warning("订单锁 Redis 操作失败，退化为数据库条件更新: %s", e, extra={"order_id": order_id})
            return ""
        return token if ok else None

    async def release(self, order_id: int, token: Optional[str]) -> None:
        """释放锁；token 为空（未真正加锁）时跳过"""
        if not token:
            return
        r = self._redis()
        if not r:
            return
        try:
            await asyncio.to_thread(r.eval, _RELEASE_SCRIPT, 1, self.key(order_id), token)
        except Exception as e:
            # 锁会在 TTL 到期后自动释放
            logger.warning("订单锁释放失败 order_id=%s: %s", order_id, e)
