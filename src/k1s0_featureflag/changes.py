"""変更レコードの解析とストアへの適用"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Any

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .models import Flag, FlagList
from .store import FlagStore


class ChangeType(StrEnum):
    """変更レコードの種別タグ。"""

    FLAG_CREATED = "flag.created"
    FLAG_UPDATED = "flag.updated"
    FLAG_DELETED = "flag.deleted"
    FLAG_ARCHIVED = "flag.archived"
    LIST_CREATED = "list.created"
    LIST_UPDATED = "list.updated"
    LIST_DELETED = "list.deleted"
    RESYNC_REQUIRED = "resync.required"


@dataclass(frozen=True)
class FlagUpserted:
    """flag.created / flag.updated。"""

    type: ChangeType
    flag: Flag


@dataclass(frozen=True)
class FlagRemoved:
    """flag.deleted / flag.archived。どちらもストアから取り除く。"""

    type: ChangeType
    flag_key: str


@dataclass(frozen=True)
class ListUpserted:
    """list.created / list.updated。"""

    type: ChangeType
    flag_list: FlagList


@dataclass(frozen=True)
class ListRemoved:
    type: ChangeType
    list_key: str


@dataclass(frozen=True)
class ResyncRequired:
    """カーソルが無効になったことを表す。以降のバッチ内変更は適用しない。"""

    type: ChangeType = ChangeType.RESYNC_REQUIRED


Change = FlagUpserted | FlagRemoved | ListUpserted | ListRemoved | ResyncRequired


class ApplyResult(Enum):
    """apply_changes の結果。"""

    NOOP = "noop"
    APPLIED = "applied"
    RESYNC = "resync"


@dataclass
class ChangesPage:
    """差分 API の 1 ページ。"""

    changes: list[Change]
    cursor: str
    has_more: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChangesPage:
        cursor = data.get("cursor")
        if not isinstance(cursor, str):
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.MALFORMED_PAYLOAD,
                message="changes response has no cursor",
            )
        return cls(
            changes=parse_changes(data.get("changes") or []),
            cursor=cursor,
            has_more=bool(data.get("hasMore", False)),
        )


@dataclass
class ChangeBatch:
    """ストリームの差分バッチ。cursor は適用成功後にだけ保存する。"""

    cursor: str
    changes: list[Change]


@dataclass
class FlagSnapshot:
    """旧形式のフルフラグ配信。丸ごと置き換えで適用する。"""

    flags: list[Flag]


StreamMessage = ChangeBatch | FlagSnapshot


def _malformed(message: str, cause: BaseException | None = None) -> FeatureFlagError:
    return FeatureFlagError(
        code=FeatureFlagErrorCodes.MALFORMED_PAYLOAD,
        message=message,
        cause=cause,
    )


def _payload(data: Mapping[str, Any], change_type: ChangeType) -> Mapping[str, Any]:
    payload = data["data"]
    if not isinstance(payload, Mapping):
        raise _malformed(f"{change_type.value} data must be an object")
    return payload


def parse_change(data: Mapping[str, Any]) -> Change:
    """変更レコード辞書を Change に変換する。"""
    try:
        change_type = ChangeType(data.get("type"))
    except ValueError as e:
        raise _malformed(f"unknown change type: {data.get('type')!r}", e) from e

    try:
        if change_type in (ChangeType.FLAG_CREATED, ChangeType.FLAG_UPDATED):
            return FlagUpserted(type=change_type, flag=Flag.from_dict(_payload(data, change_type)))
        if change_type in (ChangeType.FLAG_DELETED, ChangeType.FLAG_ARCHIVED):
            return FlagRemoved(type=change_type, flag_key=data["flagKey"])
        if change_type in (ChangeType.LIST_CREATED, ChangeType.LIST_UPDATED):
            return ListUpserted(
                type=change_type, flag_list=FlagList.from_dict(_payload(data, change_type))
            )
        if change_type is ChangeType.LIST_DELETED:
            return ListRemoved(type=change_type, list_key=data["listKey"])
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise _malformed(f"invalid {change_type.value} change: {e}", e) from e
    return ResyncRequired()


def parse_changes(items: Iterable[Any]) -> list[Change]:
    changes: list[Change] = []
    for item in items:
        if not isinstance(item, Mapping):
            raise _malformed(f"change must be an object, got {type(item).__name__}")
        changes.append(parse_change(item))
    return changes


def parse_stream_message(raw: str) -> StreamMessage:
    """ストリームのメッセージを解析する。

    Raises:
        FeatureFlagError: JSON として解釈できないか、既知の形式でない場合 (MALFORMED_PAYLOAD)
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise _malformed(f"stream message is not valid JSON: {e}", e) from e

    if isinstance(data, Mapping):
        if isinstance(data.get("cursor"), str) and isinstance(data.get("changes"), list):
            return ChangeBatch(cursor=data["cursor"], changes=parse_changes(data["changes"]))
        if isinstance(data.get("flags"), list):
            if not all(isinstance(f, Mapping) for f in data["flags"]):
                raise _malformed("flags payload must contain objects")
            try:
                return FlagSnapshot(flags=[Flag.from_dict(f) for f in data["flags"]])
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise _malformed(f"invalid flags payload: {e}", e) from e
    raise _malformed("unrecognized stream message")


def apply_changes(store: FlagStore, changes: Iterable[Change]) -> ApplyResult:
    """変更を配列順にストアへ適用する。

    ResyncRequired に到達した時点で残りを捨てて RESYNC を返す。
    """
    result = ApplyResult.NOOP
    for change in changes:
        if isinstance(change, ResyncRequired):
            return ApplyResult.RESYNC
        if isinstance(change, FlagUpserted):
            store.set([change.flag])
        elif isinstance(change, FlagRemoved):
            store.delete(change.flag_key)
        elif isinstance(change, ListUpserted):
            store.lists.create(change.flag_list)
        elif isinstance(change, ListRemoved):
            store.lists.delete(change.list_key)
        result = ApplyResult.APPLIED
    return result
