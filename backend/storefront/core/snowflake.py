"""
Snowflake ID 生成器

所有表都使用 64 位 Snowflake 主键：订单、明细、投递尝试的 ID 大致按时间递增，
且不依赖数据库序列。

ID 结构：
- 41 位：距 _EPOCH_MS 的毫秒数
- 10 位：节点 ID（0-1023，每个进程一个）
- 12 位：同一毫秒内的序号（0-4095）
"""
from __future__ import annotations

import threading
import time

from storefront.core.config import settings

# 起始时间 2024-01-01T00:00:00Z（毫秒）
_EPOCH_MS = 1704067200000


class Snowflake:
    """线程安全的 Snowflake ID 生成器"""

    def __init__(self, *, node_id: int) -> None:
        if not (0 <= node_id <= 1023):
            raise ValueError("SNOWFLAKE_NODE_ID must be in [0, 1023]")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    def next_id(self) -> int:
        """
        生成下一个 ID

        时钟小幅回拨（< 5 秒）时等待追上；回拨更多则直接报错，避免生成重复 ID。

        Raises:
            RuntimeError: 时钟回拨超过 5 秒
        """
        with self._lock:
            ts = self._now_ms()
            if ts < self._last_ts:
                diff = self._last_ts - ts
                if diff > 5000:
                    raise RuntimeError(
                        f"Clock moved backwards by {diff}ms. "
                        "Refusing to generate IDs to prevent duplicates."
                    )
                ts = self._wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & 0xFFF
                if self._seq == 0:
                    # 当前毫秒序号用完，等到下一毫秒
                    ts = self._wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << 22) | (self._node_id << 12) | self._seq

    @classmethod
    def _wait_until(cls, target_ms: int) -> int:
        ts = cls._now_ms()
        while ts < target_ms:
            time.sleep(0.001)
            ts = cls._now_ms()
        return ts


_GENERATOR: Snowflake | None = None


def _get_generator() -> Snowflake:
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _GENERATOR


def generate_id() -> int:
    """从进程内共用的生成器获取新 ID"""
    return _get_generator().next_id()
