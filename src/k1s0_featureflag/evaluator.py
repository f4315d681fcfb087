"""フラグ評価エンジン"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .hashing import get_bucket, hash_member
from .models import (
    MISSING,
    Condition,
    EvaluationContext,
    Flag,
    Operator,
    Rule,
    Target,
    Variant,
)
from .store import FlagStore


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    # True == 1 を一致とみなさない
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _compare(left: Any, right: Any, operator: Operator) -> bool:
    if not (_is_number(left) and _is_number(right)):
        return False
    if operator is Operator.GT:
        return left > right
    if operator is Operator.LT:
        return left < right
    if operator is Operator.GTE:
        return left >= right
    return left <= right


def _in_values(attribute_value: Any, values: Any) -> bool:
    if not isinstance(values, (list, tuple, set, frozenset)):
        return False
    return any(_strict_equals(attribute_value, candidate) for candidate in values)


def _stale_default(flag: Flag) -> bool:
    """default_variant_id が定義に無いバリアントを指しているか。"""
    return flag.default_variant_id is not None and flag.find_variant(flag.default_variant_id) is None


@dataclass(frozen=True)
class Resolution:
    """評価で決まった値。

    stale_default はフラグ定義の不整合（存在しないデフォルトバリアント）のために
    default_value へ落ちたことを表す。
    """

    value: Any
    stale_default: bool = False


class Evaluator:
    """フラグ定義とコンテキストから値を決定するステートレスな評価器。

    ストアはリストメンバーシップの参照にのみ使い、書き込みは行わない。
    """

    def __init__(self, store: FlagStore) -> None:
        self._store = store

    def evaluate(self, flag: Flag, context: EvaluationContext) -> Any:
        """フラグを評価して値を返す。

        Raises:
            FeatureFlagError: ロールアウト計算が破綻し、どこにもデフォルトがない場合
        """
        return self.resolve(flag, context).value

    def resolve(self, flag: Flag, context: EvaluationContext) -> Resolution:
        """フラグを評価し、値とデフォルトへの落ち方を返す。

        ルール、ターゲットの順に配列順で走査し、最初に一致したものを採用する。
        一致しなければデフォルトバリアント、最後に default_value を返す。
        default_variant_id が存在しないバリアントを指している場合は
        default_value を返し、stale_default を立てる。

        Raises:
            FeatureFlagError: ロールアウト計算が破綻し、どこにもデフォルトがない場合
        """
        for rule in flag.rules:
            if not rule.enabled or not self.matches_rule(rule, context):
                continue
            if rule.target_id is not None:
                target = flag.find_target(rule.target_id)
                if target is not None:
                    return self._resolve_rollout(target, flag, context)
            return Resolution(rule.result)

        for target in flag.targets:
            if self._matches_target(target, context):
                return self._resolve_rollout(target, flag, context)

        return self._resolve_default(flag)

    def matches_rule(self, rule: Rule, context: EvaluationContext) -> bool:
        """ルールの全条件が一致するか確認する。"""
        return all(self.matches_condition(condition, context) for condition in rule.conditions)

    def matches_condition(self, condition: Condition, context: EvaluationContext) -> bool:
        """単一条件を評価する。属性がコンテキストに無ければ演算子によらず False。"""
        attribute_value = context.lookup(condition.attribute)
        if attribute_value is MISSING:
            return False

        operator = condition.operator
        if operator is Operator.EQUALS:
            return _strict_equals(attribute_value, condition.value)
        if operator is Operator.CONTAINS:
            return (
                isinstance(attribute_value, str)
                and isinstance(condition.value, str)
                and condition.value in attribute_value
            )
        if operator in (Operator.GT, Operator.LT, Operator.GTE, Operator.LTE):
            return _compare(attribute_value, condition.value, operator)
        if operator is Operator.IN:
            return _in_values(attribute_value, condition.value)
        if operator is Operator.NOT_IN:
            if not isinstance(condition.value, (list, tuple, set, frozenset)):
                return False
            return not _in_values(attribute_value, condition.value)
        if operator is Operator.IN_LIST:
            return self._in_list(condition.value, attribute_value, missing=False)
        if operator is Operator.NOT_IN_LIST:
            return not self._in_list(condition.value, attribute_value, missing=True)
        # 未知の演算子
        return False

    def _in_list(self, list_key: Any, attribute_value: Any, *, missing: bool) -> bool:
        # リストやソルトが無い場合は判定できないので missing を返す
        if not isinstance(list_key, str):
            return missing
        flag_list = self._store.lists.get(list_key)
        salt = self._store.lists.get_salt(list_key)
        if flag_list is None or salt is None:
            return missing
        return self._store.lists.contains(list_key, hash_member(salt, attribute_value))

    def _matches_target(self, target: Target, context: EvaluationContext) -> bool:
        if not target.rules:
            return True
        return any(rule.enabled and self.matches_rule(rule, context) for rule in target.rules)

    def evaluate_rollout(
        self, target: Target, flag: Flag, context: EvaluationContext
    ) -> Variant:
        """パーセンテージロールアウトでバリアントを決定する。

        "{identity}:{flag_key}" のハッシュからバケットを求め、累積割合がバケットを
        超えた最初のバリアントを選ぶ。同じ識別子とフラグには常に同じバリアントを返す。
        """
        variant = self._pick_variant(target, flag, context)
        if variant is not None:
            return variant
        return self._default_variant(flag)

    def _pick_variant(
        self, target: Target, flag: Flag, context: EvaluationContext
    ) -> Variant | None:
        if len(target.variants) == 1 and target.variants[0].percentage == 100:
            variant = flag.find_variant(target.variants[0].variant_id)
            if variant is not None:
                return variant

        bucket = get_bucket(f"{context.bucketing_key}:{flag.key}")
        accumulated = 0.0
        for target_variant in target.variants:
            accumulated += target_variant.percentage
            if bucket < accumulated:
                # 定義に無いバリアント ID は飛ばして次を見る
                variant = flag.find_variant(target_variant.variant_id)
                if variant is not None:
                    return variant
        return None

    def _resolve_rollout(
        self, target: Target, flag: Flag, context: EvaluationContext
    ) -> Resolution:
        variant = self._pick_variant(target, flag, context)
        if variant is not None:
            return Resolution(variant.value)
        return Resolution(self._default_variant(flag).value, stale_default=_stale_default(flag))

    def _resolve_default(self, flag: Flag) -> Resolution:
        variant = flag.find_variant(flag.default_variant_id)
        if variant is not None:
            return Resolution(variant.value)
        return Resolution(flag.default_value, stale_default=_stale_default(flag))

    def _default_variant(self, flag: Flag) -> Variant:
        variant = flag.find_variant(flag.default_variant_id)
        if variant is not None:
            return variant
        if flag.default_value is not None:
            return Variant(id=flag.default_variant_id or "", value=flag.default_value)
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.DEFAULT_VARIANT_NOT_FOUND,
            message=f"ロールアウトでバリアントが決まらず、デフォルトもありません: {flag.key}",
        )
