"""featureflag データモデル"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar


class FlagType(StrEnum):
    """フラグの値型。"""

    BOOLEAN = "boolean"
    STRING = "string"
    NUMBER = "number"
    OBJECT = "object"


class Operator(StrEnum):
    """条件演算子。"""

    EQUALS = "equals"
    CONTAINS = "contains"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    IN_LIST = "in_list"
    NOT_IN_LIST = "not_in_list"


class EvaluationMode(StrEnum):
    """評価モード。local はフラグ定義をローカル評価し、remote はサーバー評価済みの値を使う。"""

    LOCAL = "local"
    REMOTE = "remote"


class EvaluationSource(StrEnum):
    """評価結果の出所。"""

    REMOTE = "remote"
    DEFAULT = "default"
    FALLBACK = "fallback"


class ClientStatus(StrEnum):
    """クライアントの初期化状態。"""

    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class Condition:
    """ルール条件。

    このクライアントが知らない演算子は文字列のまま保持し、評価では一致しない扱いにする。
    """

    attribute: str
    operator: Operator | str
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Condition:
        value = data.get("value")
        if isinstance(value, list):
            value = tuple(value)
        raw_operator = data["operator"]
        try:
            operator: Operator | str = Operator(raw_operator)
        except ValueError:
            operator = str(raw_operator)
        return cls(
            attribute=data["attribute"],
            operator=operator,
            value=value,
        )


@dataclass(frozen=True)
class Rule:
    """条件の AND 集合。result を直接返すか、target_id でロールアウトを参照する。

    priority は情報用のメタデータで、評価順は常に配列順。
    """

    conditions: tuple[Condition, ...] = ()
    result: Any = None
    enabled: bool = True
    priority: int = 0
    target_id: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Rule:
        return cls(
            conditions=tuple(Condition.from_dict(c) for c in data.get("conditions", [])),
            result=data.get("result"),
            enabled=data.get("enabled", True),
            priority=data.get("priority", 0),
            target_id=data.get("targetId"),
        )


@dataclass(frozen=True)
class Variant:
    """フラグバリアント。"""

    id: str
    value: Any

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Variant:
        return cls(id=data["id"], value=data.get("value"))


@dataclass(frozen=True)
class TargetVariant:
    """ロールアウト内のバリアント割合。"""

    variant_id: str
    percentage: float

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TargetVariant:
        return cls(variant_id=data["variantId"], percentage=data.get("percentage", 0))


@dataclass(frozen=True)
class Target:
    """ルールでガードされたパーセンテージロールアウト。"""

    variants: tuple[TargetVariant, ...] = ()
    rules: tuple[Rule, ...] = ()
    id: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Target:
        return cls(
            variants=tuple(TargetVariant.from_dict(v) for v in data.get("variants", [])),
            rules=tuple(Rule.from_dict(r) for r in data.get("rules", [])),
            id=data.get("id"),
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


_VALUE_CHECKS: dict[FlagType, Any] = {
    FlagType.BOOLEAN: lambda v: isinstance(v, bool),
    FlagType.STRING: lambda v: isinstance(v, str),
    FlagType.NUMBER: _is_number,
    FlagType.OBJECT: lambda v: isinstance(v, Mapping),
}


@dataclass(frozen=True)
class Flag:
    """フィーチャーフラグ定義。型ごとのサブクラスで表現する。"""

    type: ClassVar[FlagType]

    key: str
    default_value: Any = None
    value: Any = None
    default_variant_id: str | None = None
    variants: tuple[Variant, ...] = ()
    targets: tuple[Target, ...] = ()
    rules: tuple[Rule, ...] = ()

    def __post_init__(self) -> None:
        check = _VALUE_CHECKS[self.type]
        for name in ("default_value", "value"):
            candidate = getattr(self, name)
            if candidate is not None and not check(candidate):
                raise ValueError(
                    f"flag {self.key!r}: {name} {candidate!r} is not a {self.type.value} value"
                )

    def find_variant(self, variant_id: str | None) -> Variant | None:
        """ID でバリアントを探す。"""
        if variant_id is None:
            return None
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None

    def find_target(self, target_id: str) -> Target | None:
        for target in self.targets:
            if target.id == target_id:
                return target
        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Flag:
        """API レスポンス辞書から宣言型に応じた Flag サブクラスを生成する。"""
        raw_type = data.get("type")
        if raw_type == "json":
            raw_type = FlagType.OBJECT.value
        try:
            flag_type = FlagType(raw_type)
        except ValueError as e:
            raise ValueError(f"unknown flag type: {raw_type!r}") from e
        flag_cls = _FLAG_CLASSES[flag_type]
        return flag_cls(
            key=data["key"],
            default_value=data.get("defaultValue"),
            value=data.get("value"),
            default_variant_id=data.get("defaultVariantId"),
            variants=tuple(Variant.from_dict(v) for v in data.get("variants") or []),
            targets=tuple(Target.from_dict(t) for t in data.get("targets") or []),
            rules=tuple(Rule.from_dict(r) for r in data.get("rules") or []),
        )


@dataclass(frozen=True)
class BooleanFlag(Flag):
    type: ClassVar[FlagType] = FlagType.BOOLEAN


@dataclass(frozen=True)
class StringFlag(Flag):
    type: ClassVar[FlagType] = FlagType.STRING


@dataclass(frozen=True)
class NumberFlag(Flag):
    type: ClassVar[FlagType] = FlagType.NUMBER


@dataclass(frozen=True)
class ObjectFlag(Flag):
    type: ClassVar[FlagType] = FlagType.OBJECT


_FLAG_CLASSES: dict[FlagType, type[Flag]] = {
    FlagType.BOOLEAN: BooleanFlag,
    FlagType.STRING: StringFlag,
    FlagType.NUMBER: NumberFlag,
    FlagType.OBJECT: ObjectFlag,
}


@dataclass(frozen=True)
class FlagList:
    """ソルト付きハッシュのメンバー集合。生の識別子は保持しない。"""

    key: str
    salt: str = ""
    members: frozenset[str] = frozenset()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FlagList:
        return cls(
            key=data["key"],
            salt=data.get("salt") or "",
            members=frozenset(data.get("members") or []),
        )


_IDENTITY_ATTRIBUTES = ("key", "id")
MISSING: Any = object()


@dataclass
class EvaluationContext:
    """フラグ評価コンテキスト。

    key はスティッキーなバケット割り当てに使う識別子で、属性 "key" / "id" としても参照できる。
    """

    key: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    def lookup(self, attribute: str) -> Any:
        """属性値を返す。存在しないか None の場合は MISSING を返す。"""
        if attribute in _IDENTITY_ATTRIBUTES and self.key is not None:
            return self.key
        value = self.attributes.get(attribute)
        return MISSING if value is None else value

    @property
    def bucketing_key(self) -> str:
        return self.key or "anonymous"

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.attributes)
        if self.key is not None:
            data["key"] = self.key
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EvaluationContext:
        attributes = dict(data)
        key = attributes.pop("key", None)
        if key is None:
            key = attributes.pop("id", None)
        return cls(key=None if key is None else str(key), attributes=attributes)


@dataclass
class EvaluationResult:
    """フラグ評価結果。"""

    flag_key: str
    value: Any
    source: EvaluationSource
    reason: str = ""


@dataclass
class FlagDefinitions:
    """ローカル評価用のフル定義レスポンス。"""

    flags: list[Flag]
    lists: list[FlagList]
    cursor: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FlagDefinitions:
        return cls(
            flags=[Flag.from_dict(f) for f in data.get("flags") or []],
            lists=[FlagList.from_dict(entry) for entry in data.get("lists") or []],
            cursor=data.get("cursor"),
        )


@dataclass
class ListInfo:
    """リスト管理 API 用のリスト情報。"""

    key: str
    name: str
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"key": self.key, "name": self.name}
        if self.description:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ListInfo:
        return cls(
            key=data["key"],
            name=data.get("name", data["key"]),
            description=data.get("description") or "",
        )
