"""ストリーミング優先・ポーリングフォールバックのフラグ同期"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum, StrEnum

from .changes import ApplyResult, FlagSnapshot, apply_changes, parse_stream_message
from .channels import EventChannel, FlagsUpdated, UpdateKind
from .config import FeatureFlagConfig
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .loader import Loader
from .models import EvaluationMode
from .store import FlagStore

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """同期の状態。ストリーミングとポーリングが同時に動くことはない。"""

    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    POLLING = "polling"
    CLOSED = "closed"


class SyncOutcome(StrEnum):
    """sync_changes 1 回分の結果。"""

    UNCHANGED = "unchanged"
    UPDATED = "updated"
    RESYNCED = "resynced"


class Synchronizer:
    """ストアを最新に保つ同期マネージャー。

    1 インスタンスにつき 1 つの監督タスクだけが動き、その中でストリーミングか
    ポーリングのどちらか一方を実行する。ストリームが開けない・繰り返し失敗する・
    無効化されている場合はポーリングに切り替える。

    更新処理（ポーリング 1 回・ストリームメッセージ 1 件・手動再同期）はロックで
    直列化する。停止時はタスクをキャンセルし、応答待ちの結果は適用しない。
    """

    def __init__(
        self,
        config: FeatureFlagConfig,
        loader: Loader,
        store: FlagStore,
        errors: EventChannel[FeatureFlagError] | None = None,
        updates: EventChannel[FlagsUpdated] | None = None,
    ) -> None:
        self._config = config
        self._loader = loader
        self._store = store
        self._errors = errors if errors is not None else EventChannel(config.event_buffer_size)
        self._updates = updates if updates is not None else EventChannel(config.event_buffer_size)
        self._state = SyncState.IDLE
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._closed = False
        self._stream_failures = 0

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """同期タスクを開始する。実行中または停止済みなら何もしない。"""
        if self._closed:
            logger.debug("Synchronizer is closed; start ignored")
            return
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """実行中の処理をキャンセルして CLOSED に遷移する。冪等。"""
        self._closed = True
        self._set_state(SyncState.CLOSED)
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def close(self) -> None:
        await self.stop()

    async def sync_changes(self) -> SyncOutcome:
        """サーバーから変更を取得して適用する。

        カーソルがあれば hasMore が False になるまで差分ページを取得し、無ければ
        フル同期する。差分に resync.required が含まれていた場合もフル同期する。
        """
        async with self._lock:
            return await self._sync_changes_locked()

    async def resync(self, keep_existing: bool = False) -> None:
        """フラグ・リスト・カーソルを丸ごと取得し直す。

        keep_existing が True なら置き換えずに上書きで重ね、取得結果に無い
        フラグとリストを残す。初回取得でオフラインフラグを残すために使う。
        """
        async with self._lock:
            await self._resync_locked(keep_existing)

    def _set_state(self, state: SyncState) -> None:
        if self._state is SyncState.CLOSED and state is not SyncState.CLOSED:
            return
        if self._state is not state:
            logger.debug(
                "Synchronizer state changed",
                extra={"from_state": self._state.value, "to_state": state.value},
            )
            self._state = state

    def _report(self, error: BaseException) -> None:
        if not isinstance(error, FeatureFlagError):
            error = FeatureFlagError(
                code=FeatureFlagErrorCodes.SYNC_ERROR,
                message=f"Unexpected synchronization error: {error}",
                cause=error,
            )
        logger.warning(
            "Feature flag synchronization error",
            extra={"code": error.code, "error": str(error)},
        )
        self._errors.publish(error)

    def _notify(self, kind: UpdateKind) -> None:
        self._updates.publish(FlagsUpdated(kind=kind, flag_count=len(self._store.get_all())))

    def _remote(self) -> bool:
        return self._config.evaluation_mode is EvaluationMode.REMOTE

    def _streaming_allowed(self) -> bool:
        if self._config.disable_streaming:
            return False
        if self._remote():
            return False
        return self._loader.supports_streaming

    async def _sync_changes_locked(self) -> SyncOutcome:
        cursor = self._store.get_cursor()
        if cursor is None or self._remote():
            await self._resync_locked()
            return SyncOutcome.RESYNCED

        outcome = SyncOutcome.UNCHANGED
        has_more = True
        while has_more:
            page = await self._loader.get_changes(cursor)
            if self._closed:
                return outcome
            result = apply_changes(self._store, page.changes)
            if result is ApplyResult.RESYNC:
                await self._resync_locked()
                return SyncOutcome.RESYNCED
            self._store.set_cursor(page.cursor)
            cursor = page.cursor
            has_more = page.has_more
            if result is ApplyResult.APPLIED:
                outcome = SyncOutcome.UPDATED
                self._notify(UpdateKind.INCREMENTAL)
        return outcome

    async def _resync_locked(self, keep_existing: bool = False) -> None:
        if self._remote():
            flags = await self._loader.get_flags(self._store.get_context())
            if self._closed:
                return
            if keep_existing:
                self._store.set(flags)
            else:
                self._store.replace(flags)
        else:
            definitions = await self._loader.get_flag_definitions()
            if self._closed:
                return
            if keep_existing:
                for flag_list in definitions.lists:
                    self._store.lists.create(flag_list)
                self._store.set(definitions.flags)
            else:
                self._store.lists.replace(definitions.lists)
                self._store.replace(definitions.flags)
            self._store.set_cursor(definitions.cursor)
        self._notify(UpdateKind.FULL)

    async def _run(self) -> None:
        if self._streaming_allowed():
            await self._run_stream()
        else:
            logger.debug("Streaming unavailable; using polling")
        await self._run_polling()

    async def _run_stream(self) -> None:
        """ストリーミングを続ける。ポーリングへ切り替えるべきときに戻る。"""
        self._stream_failures = 0
        self._set_state(SyncState.CONNECTING)
        while True:
            try:
                await self._consume_stream()
                logger.debug("Change stream ended; reconnecting")
            except Exception as e:
                self._stream_failures += 1
                self._report(e)
                if self._stream_failures > self._config.max_reconnect_attempts:
                    logger.warning(
                        "Change stream failed repeatedly; falling back to polling",
                        extra={"failures": self._stream_failures},
                    )
                    return
            self._set_state(SyncState.RECONNECTING)
            await asyncio.sleep(self._config.reconnect_delay_seconds)

    async def _consume_stream(self) -> None:
        if self._store.get_cursor() is None:
            await self.resync()
        async with self._loader.stream_changes(self._store.get_cursor()) as messages:
            self._set_state(SyncState.STREAMING)
            self._stream_failures = 0
            async for raw in messages:
                await self._handle_stream_message(raw)

    async def _handle_stream_message(self, raw: str) -> None:
        """ストリームの 1 メッセージを適用する。不正なメッセージは報告して捨てる。"""
        try:
            message = parse_stream_message(raw)
        except FeatureFlagError as e:
            self._report(e)
            return

        async with self._lock:
            if self._closed:
                return
            if isinstance(message, FlagSnapshot):
                self._store.replace(message.flags)
                self._notify(UpdateKind.SNAPSHOT)
                return

            result = apply_changes(self._store, message.changes)
            if result is ApplyResult.RESYNC:
                try:
                    await self._resync_locked()
                except Exception as e:
                    # 差分の基点を失ったので次回はフル同期させる
                    self._store.set_cursor(None)
                    self._report(e)
                return
            self._store.set_cursor(message.cursor)
            if result is ApplyResult.APPLIED:
                self._notify(UpdateKind.INCREMENTAL)

    async def _run_polling(self) -> None:
        interval = self._config.polling_interval_seconds
        if interval <= 0:
            logger.info("Polling disabled; synchronizer idle")
            self._set_state(SyncState.IDLE)
            return
        self._set_state(SyncState.POLLING)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sync_changes()
            except Exception as e:
                self._report(e)
