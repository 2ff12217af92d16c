"""
Redis 连接

投递任务通过 Redis Stream 发给游戏服务器桥接程序。
每个进程通过 ``lru_cache`` 共用一个客户端，首次使用时才建立连接。
"""
from __future__ import annotations

from functools import lru_cache

import redis

from storefront.core.config import settings


@lru_cache(maxsize=1)
def get_redis() -> redis.Redis:
    """获取进程内共用的 Redis 客户端（decode_responses=True，返回 str）"""
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
    )
