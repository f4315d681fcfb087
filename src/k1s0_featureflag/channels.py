"""エラー通知・更新通知チャネル"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class UpdateKind(StrEnum):
    """ストア更新の種類。"""

    FULL = "full"
    INCREMENTAL = "incremental"
    SNAPSHOT = "snapshot"
    CONTEXT = "context"


@dataclass
class FlagsUpdated:
    """フラグ更新通知。"""

    kind: UpdateKind
    flag_count: int
    timestamp: float = field(default_factory=time.time)


class EventChannel(Generic[T]):
    """上限付きバッファと同期購読者を持つチャネル。

    バッファが一杯のときは最も古いイベントを捨てる。購読者の例外はログに残し、
    発行側には伝播させない。
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._buffer: deque[T] = deque(maxlen=maxsize)
        self._subscribers: list[Callable[[T], None]] = []

    def publish(self, event: T) -> None:
        self._buffer.append(event)
        for handler in list(self._subscribers):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Event channel subscriber failed",
                    extra={"event": repr(event), "error": str(e)},
                )

    def subscribe(self, handler: Callable[[T], None]) -> Callable[[], None]:
        """購読者を登録する。戻り値を呼ぶと購読を解除する。"""
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    def drain(self) -> list[T]:
        """バッファ内のイベントをすべて取り出す。"""
        events = list(self._buffer)
        self._buffer.clear()
        return events

    def __len__(self) -> int:
        return len(self._buffer)
