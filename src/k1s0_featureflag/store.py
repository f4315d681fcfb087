"""フラグ定義・リスト・コンテキスト・カーソルのインメモリストア"""

from __future__ import annotations

from collections.abc import Iterable

from .models import EvaluationContext, Flag, FlagList


class ListStore:
    """評価リスト（ソルト付きハッシュ集合）のストア。

    書き込みは FlagList 単位、またはバックエンド辞書単位で差し替えるため、
    読み手が途中状態を観測することはない。
    """

    def __init__(self) -> None:
        self._lists: dict[str, FlagList] = {}

    def get(self, key: str) -> FlagList | None:
        return self._lists.get(key)

    def get_all(self) -> list[FlagList]:
        return list(self._lists.values())

    def get_salt(self, key: str) -> str | None:
        entry = self._lists.get(key)
        if entry is None or not entry.salt:
            return None
        return entry.salt

    def contains(self, key: str, token: str) -> bool:
        """ハッシュ済みトークンがリストに含まれるか確認する。"""
        entry = self._lists.get(key)
        return entry is not None and token in entry.members

    def replace(self, lists: Iterable[FlagList]) -> None:
        """全リストを丸ごと差し替える。"""
        self._lists = {entry.key: entry for entry in lists}

    def create(self, flag_list: FlagList) -> None:
        """リストを作成、または同じキーのリストを置き換える。"""
        lists = dict(self._lists)
        lists[flag_list.key] = flag_list
        self._lists = lists

    def delete(self, key: str) -> bool:
        """リストを削除する。削除できたら True。"""
        if key not in self._lists:
            return False
        lists = dict(self._lists)
        del lists[key]
        self._lists = lists
        return True

    def add(self, key: str, members: Iterable[str]) -> None:
        """ハッシュ済みメンバーを追加する。既存メンバーの追加は何もしない。"""
        entry = self._lists.get(key)
        if entry is None:
            return
        self.create(FlagList(key=key, salt=entry.salt, members=entry.members | frozenset(members)))

    def remove(self, key: str, members: Iterable[str]) -> None:
        """ハッシュ済みメンバーを削除する。メンバーでない値は無視する。"""
        entry = self._lists.get(key)
        if entry is None:
            return
        self.create(FlagList(key=key, salt=entry.salt, members=entry.members - frozenset(members)))


class FlagStore:
    """フラグ定義キャッシュ。

    I/O もコールバックも持たない純粋なデータ構造。replace はバックエンド辞書の参照を
    丸ごと差し替えるので、get_all は常に完全な旧状態か完全な新状態のどちらかを返す。
    """

    def __init__(self, initial_flags: Iterable[Flag] = ()) -> None:
        self._flags: dict[str, Flag] = {flag.key: flag for flag in initial_flags}
        self._context = EvaluationContext()
        self._cursor: str | None = None
        self.lists = ListStore()

    def get(self, key: str) -> Flag | None:
        return self._flags.get(key)

    def get_all(self) -> list[Flag]:
        return list(self._flags.values())

    def set(self, flags: Iterable[Flag]) -> None:
        """キー単位でフラグを upsert する。"""
        updated = dict(self._flags)
        for flag in flags:
            updated[flag.key] = flag
        self._flags = updated

    def replace(self, flags: Iterable[Flag]) -> None:
        """全フラグを丸ごと差し替える。"""
        self._flags = {flag.key: flag for flag in flags}

    def delete(self, key: str) -> bool:
        """フラグを削除する。削除できたら True。"""
        if key not in self._flags:
            return False
        updated = dict(self._flags)
        del updated[key]
        self._flags = updated
        return True

    def get_context(self) -> EvaluationContext:
        return self._context

    def set_context(self, context: EvaluationContext) -> None:
        self._context = context

    def get_cursor(self) -> str | None:
        """最後に適用した変更位置。None は差分同期の基点がないことを表す。"""
        return self._cursor

    def set_cursor(self, cursor: str | None) -> None:
        self._cursor = cursor
