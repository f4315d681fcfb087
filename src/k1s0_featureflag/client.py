"""FeatureFlagClient プロトコルと評価の共通実装"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from .channels import EventChannel
from .evaluator import Evaluator
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .models import (
    ClientStatus,
    EvaluationContext,
    EvaluationMode,
    EvaluationResult,
    EvaluationSource,
)
from .store import FlagStore
from .telemetry import EvaluationRecord, NoopTelemetrySink, TelemetrySink

logger = logging.getLogger(__name__)


class FeatureFlagClientProtocol(Protocol):
    """フィーチャーフラグクライアントプロトコル。"""

    def evaluate(
        self,
        flag_key: str,
        context: EvaluationContext | None = None,
        fallback: Any = None,
    ) -> EvaluationResult: ...

    def get(
        self,
        flag_key: str,
        context: EvaluationContext | None = None,
        fallback: Any = None,
    ) -> Any: ...

    def is_enabled(self, flag_key: str, context: EvaluationContext | None = None) -> bool: ...

    async def reload(self) -> None: ...

    async def close(self) -> None: ...


class EvaluatingClient:
    """ストアと評価器を使ってフラグを評価するクライアントの共通部分。

    評価は同期的に行い、公開境界の外へ例外を送出しない。エラーは errors チャネルに
    報告し、呼び出し元には常に値（フォールバックを含む）を返す。
    """

    def __init__(
        self,
        store: FlagStore,
        mode: EvaluationMode = EvaluationMode.LOCAL,
        telemetry: TelemetrySink | None = None,
        errors: EventChannel[FeatureFlagError] | None = None,
    ) -> None:
        self._store = store
        self._evaluator = Evaluator(store)
        self._mode = mode
        self._telemetry: TelemetrySink = telemetry if telemetry is not None else NoopTelemetrySink()
        self._errors: EventChannel[FeatureFlagError] = errors if errors is not None else EventChannel()

    @property
    def store(self) -> FlagStore:
        return self._store

    @property
    def evaluator(self) -> Evaluator:
        return self._evaluator

    @property
    def errors(self) -> EventChannel[FeatureFlagError]:
        return self._errors

    @property
    def status(self) -> ClientStatus:
        return ClientStatus.READY

    def evaluate(
        self,
        flag_key: str,
        context: EvaluationContext | None = None,
        fallback: Any = None,
    ) -> EvaluationResult:
        """フラグを評価して値と出所を返す。

        - フラグが未知: fallback を返す (source=fallback)
        - 評価中にエラー: フラグの default_value、無ければ fallback (source=default)
        - デフォルトバリアントが定義に無い: default_value (source=default)
        - それ以外: 評価結果 (source=remote)

        context を省略した場合はストアのコンテキストを使う。
        """
        ctx = context if context is not None else self._store.get_context()
        flag = self._store.get(flag_key)
        if flag is None:
            result = EvaluationResult(
                flag_key=flag_key,
                value=fallback,
                source=EvaluationSource.FALLBACK,
                reason="FLAG_NOT_FOUND",
            )
        else:
            try:
                stale_default = False
                if self._mode is EvaluationMode.REMOTE:
                    value = flag.value
                else:
                    resolution = self._evaluator.resolve(flag, ctx)
                    value, stale_default = resolution.value, resolution.stale_default
                if value is None:
                    value = flag.default_value if flag.default_value is not None else fallback
                if stale_default:
                    # 定義の不整合でデフォルトに落ちたものは評価結果として扱わない
                    result = EvaluationResult(
                        flag_key=flag_key,
                        value=value,
                        source=EvaluationSource.DEFAULT,
                        reason=FeatureFlagErrorCodes.DEFAULT_VARIANT_NOT_FOUND,
                    )
                else:
                    result = EvaluationResult(
                        flag_key=flag_key,
                        value=value,
                        source=EvaluationSource.REMOTE,
                        reason="EVALUATED",
                    )
            except Exception as e:
                error = self._report(e)
                result = EvaluationResult(
                    flag_key=flag_key,
                    value=flag.default_value if flag.default_value is not None else fallback,
                    source=EvaluationSource.DEFAULT,
                    reason=error.code,
                )

        self._telemetry.record(
            EvaluationRecord(
                flag_key=flag_key,
                value=result.value,
                source=result.source,
                metadata={"sdkStatus": self.status.value},
            )
        )
        return result

    def get(
        self,
        flag_key: str,
        context: EvaluationContext | None = None,
        fallback: Any = None,
    ) -> Any:
        """フラグの値だけを返す。"""
        return self.evaluate(flag_key, context, fallback).value

    def is_enabled(self, flag_key: str, context: EvaluationContext | None = None) -> bool:
        """フラグの値が True のときだけ True を返す。"""
        return self.evaluate(flag_key, context, False).value is True

    def _report(
        self, error: BaseException, code: str = FeatureFlagErrorCodes.EVALUATION_ERROR
    ) -> FeatureFlagError:
        if not isinstance(error, FeatureFlagError):
            error = FeatureFlagError(
                code=code,
                message=f"Unexpected error: {error}",
                cause=error,
            )
        logger.warning(
            "Feature flag error",
            extra={"code": error.code, "error": str(error)},
        )
        self._errors.publish(error)
        return error
