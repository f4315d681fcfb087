"""変更レコードの解析と適用のユニットテスト"""

import json

import pytest
from k1s0_featureflag.changes import (
    ApplyResult,
    ChangeBatch,
    ChangesPage,
    ChangeType,
    FlagRemoved,
    FlagSnapshot,
    FlagUpserted,
    ListRemoved,
    ListUpserted,
    ResyncRequired,
    apply_changes,
    parse_change,
    parse_stream_message,
)
from k1s0_featureflag.exceptions import FeatureFlagError, FeatureFlagErrorCodes
from k1s0_featureflag.models import BooleanFlag, FlagList
from k1s0_featureflag.store import FlagStore


def flag_data(key: str, default: bool = True) -> dict:
    return {"key": key, "type": "boolean", "defaultValue": default}


def test_parse_change_kinds() -> None:
    upsert = parse_change({"type": "flag.updated", "data": flag_data("a")})
    assert isinstance(upsert, FlagUpserted)
    assert upsert.type == ChangeType.FLAG_UPDATED
    assert upsert.flag.key == "a"

    archived = parse_change({"type": "flag.archived", "flagKey": "a"})
    assert isinstance(archived, FlagRemoved)
    assert archived.flag_key == "a"

    list_change = parse_change(
        {"type": "list.created", "data": {"key": "beta", "salt": "s", "members": []}}
    )
    assert isinstance(list_change, ListUpserted)
    assert list_change.flag_list.salt == "s"

    removed = parse_change({"type": "list.deleted", "listKey": "beta"})
    assert isinstance(removed, ListRemoved)

    assert isinstance(parse_change({"type": "resync.required"}), ResyncRequired)


def test_parse_change_unknown_type() -> None:
    with pytest.raises(FeatureFlagError) as exc_info:
        parse_change({"type": "flag.renamed"})
    assert exc_info.value.code == FeatureFlagErrorCodes.MALFORMED_PAYLOAD


def test_parse_change_missing_field() -> None:
    with pytest.raises(FeatureFlagError) as exc_info:
        parse_change({"type": "flag.deleted"})
    assert exc_info.value.code == FeatureFlagErrorCodes.MALFORMED_PAYLOAD


def test_changes_page_from_dict() -> None:
    page = ChangesPage.from_dict(
        {
            "changes": [{"type": "flag.deleted", "flagKey": "a"}],
            "cursor": "c-2",
            "hasMore": True,
        }
    )
    assert page.cursor == "c-2"
    assert page.has_more is True
    assert len(page.changes) == 1


def test_changes_page_requires_cursor() -> None:
    with pytest.raises(FeatureFlagError) as exc_info:
        ChangesPage.from_dict({"changes": []})
    assert exc_info.value.code == FeatureFlagErrorCodes.MALFORMED_PAYLOAD


def test_parse_stream_message_batch() -> None:
    raw = json.dumps({"cursor": "c-3", "changes": [{"type": "flag.created", "data": flag_data("x")}]})
    message = parse_stream_message(raw)
    assert isinstance(message, ChangeBatch)
    assert message.cursor == "c-3"
    assert isinstance(message.changes[0], FlagUpserted)


def test_parse_stream_message_snapshot() -> None:
    message = parse_stream_message(json.dumps({"flags": [flag_data("x"), flag_data("y")]}))
    assert isinstance(message, FlagSnapshot)
    assert [f.key for f in message.flags] == ["x", "y"]


@pytest.mark.parametrize("raw", ["not json", "[]", "{}", '{"cursor": 1, "changes": []}'])
def test_parse_stream_message_malformed(raw: str) -> None:
    with pytest.raises(FeatureFlagError) as exc_info:
        parse_stream_message(raw)
    assert exc_info.value.code == FeatureFlagErrorCodes.MALFORMED_PAYLOAD


@pytest.mark.parametrize("change_type", ["flag.created", "list.updated"])
def test_parse_change_non_object_data(change_type: str) -> None:
    with pytest.raises(FeatureFlagError) as exc_info:
        parse_change({"type": change_type, "data": [1]})
    assert exc_info.value.code == FeatureFlagErrorCodes.MALFORMED_PAYLOAD


def test_parse_stream_message_snapshot_with_non_object_flag() -> None:
    with pytest.raises(FeatureFlagError) as exc_info:
        parse_stream_message(json.dumps({"flags": [1]}))
    assert exc_info.value.code == FeatureFlagErrorCodes.MALFORMED_PAYLOAD


def test_apply_changes_in_order() -> None:
    store = FlagStore([BooleanFlag(key="a", default_value=False)])
    result = apply_changes(
        store,
        [
            FlagUpserted(type=ChangeType.FLAG_CREATED, flag=BooleanFlag(key="b", default_value=True)),
            FlagRemoved(type=ChangeType.FLAG_DELETED, flag_key="a"),
            FlagUpserted(type=ChangeType.FLAG_UPDATED, flag=BooleanFlag(key="b", default_value=False)),
            ListUpserted(type=ChangeType.LIST_CREATED, flag_list=FlagList(key="beta", salt="s")),
        ],
    )
    assert result is ApplyResult.APPLIED
    assert store.get("a") is None
    assert store.get("b").default_value is False
    assert store.lists.get("beta") is not None

    assert apply_changes(store, [ListRemoved(type=ChangeType.LIST_DELETED, list_key="beta")]) is (
        ApplyResult.APPLIED
    )
    assert store.lists.get("beta") is None


def test_apply_changes_empty_is_noop() -> None:
    assert apply_changes(FlagStore(), []) is ApplyResult.NOOP


def test_apply_changes_stops_at_resync() -> None:
    """resync.required 以降の変更は適用されないこと。"""
    store = FlagStore()
    result = apply_changes(
        store,
        [
            FlagUpserted(type=ChangeType.FLAG_UPDATED, flag=BooleanFlag(key="a")),
            ResyncRequired(),
            FlagUpserted(type=ChangeType.FLAG_UPDATED, flag=BooleanFlag(key="b")),
        ],
    )
    assert result is ApplyResult.RESYNC
    assert store.get("b") is None
