"""InMemoryFeatureFlagClient 実装"""

from __future__ import annotations

from collections.abc import Iterable

from .client import EvaluatingClient
from .models import EvaluationContext, Flag, FlagList
from .store import FlagStore
from .telemetry import TelemetrySink


class InMemoryFeatureFlagClient(EvaluatingClient):
    """テスト用インメモリフィーチャーフラグクライアント。同期も I/O も行わない。"""

    def __init__(
        self,
        flags: Iterable[Flag] = (),
        lists: Iterable[FlagList] = (),
        telemetry: TelemetrySink | None = None,
    ) -> None:
        store = FlagStore(flags)
        store.lists.replace(lists)
        super().__init__(store, telemetry=telemetry)

    def set_flag(self, flag: Flag) -> None:
        """フラグを設定する。"""
        self._store.set([flag])

    def remove_flag(self, flag_key: str) -> bool:
        return self._store.delete(flag_key)

    def set_list(self, flag_list: FlagList) -> None:
        """評価リストを設定する。"""
        self._store.lists.create(flag_list)

    def set_context(self, context: EvaluationContext) -> None:
        self._store.set_context(context)

    async def reload(self) -> None:
        return None

    async def close(self) -> None:
        return None
