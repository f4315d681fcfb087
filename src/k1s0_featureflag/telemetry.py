"""評価レコードの受け口（テレメトリーシンク）"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol

from .models import EvaluationSource

MAX_QUEUE_SIZE = 500


@dataclass
class EvaluationRecord:
    """1 回のフラグ評価の記録。"""

    flag_key: str
    value: Any
    source: EvaluationSource
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "flagKey": self.flag_key,
            "value": self.value,
            "timestamp": int(self.timestamp * 1000),
            "metadata": {"source": self.source.value, **self.metadata},
        }


class TelemetrySink(Protocol):
    """評価レコードを受け取るプロトコル。送信やバッチ化は実装側の責務。"""

    def record(self, record: EvaluationRecord) -> None: ...


class NoopTelemetrySink:
    """何もしないシンク。"""

    def record(self, record: EvaluationRecord) -> None:
        return None


class InMemoryTelemetrySink:
    """テスト用インメモリシンク。上限を超えると古いレコードから捨てる。"""

    def __init__(self, max_size: int = MAX_QUEUE_SIZE) -> None:
        self._records: deque[EvaluationRecord] = deque(maxlen=max_size)

    def record(self, record: EvaluationRecord) -> None:
        self._records.append(record)

    @property
    def records(self) -> list[EvaluationRecord]:
        return list(self._records)
