"""Loader 抽象基底クラス"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import AbstractAsyncContextManager
from typing import Any

from .changes import ChangesPage
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .models import EvaluationContext, Flag, FlagDefinitions, ListInfo

UserEntry = str | Mapping[str, Any]


class Loader(ABC):
    """フラグサービスへのリモートアクセス抽象基底クラス。

    全メソッドはキャンセル可能なコルーチンで、キャンセルは asyncio.CancelledError として
    そのまま伝播する。失敗は FeatureFlagError で表す。
    """

    @abstractmethod
    async def get_flags(self, context: EvaluationContext | None = None) -> list[Flag]:
        """コンテキストに対してサーバー評価済みのフラグを取得する。"""
        ...

    @abstractmethod
    async def get_flag_definitions(self) -> FlagDefinitions:
        """ローカル評価用のフル定義（フラグ・リスト・カーソル）を取得する。"""
        ...

    @abstractmethod
    async def get_changes(self, cursor: str) -> ChangesPage:
        """カーソル以降の差分を 1 ページ取得する。"""
        ...

    @abstractmethod
    async def create_list(self, info: ListInfo) -> ListInfo:
        """リストを作成する。"""
        ...

    @abstractmethod
    async def delete_list(self, list_key: str) -> None:
        """リストを削除する。"""
        ...

    @abstractmethod
    async def add_to_list(self, list_key: str, users: Iterable[UserEntry]) -> Any:
        """リストにユーザーを追加する。"""
        ...

    @abstractmethod
    async def remove_from_list(self, list_key: str, user_keys: Iterable[str]) -> None:
        """リストからユーザーを削除する。"""
        ...

    @property
    def supports_streaming(self) -> bool:
        """stream_changes が使えるか。"""
        return False

    def stream_changes(
        self, cursor: str | None
    ) -> AbstractAsyncContextManager[AsyncIterator[str]]:
        """変更ストリームを開く。

        コンテキストに入った時点で接続済みとなり、メッセージの data を順に返す
        非同期イテレーターを渡す。接続が閉じられると反復が終わる。
        """
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.STREAM_ERROR,
            message=f"{type(self).__name__} does not support streaming",
        )
