"""HttpFeatureFlagClient のユニットテスト（respx モック）"""

import json
from typing import Any

import httpx
import pytest
import respx
from k1s0_featureflag.channels import UpdateKind
from k1s0_featureflag.config import FeatureFlagConfig
from k1s0_featureflag.exceptions import FeatureFlagError, FeatureFlagErrorCodes
from k1s0_featureflag.hashing import hash_member
from k1s0_featureflag.http_client import HttpFeatureFlagClient
from k1s0_featureflag.http_loader import HttpLoader
from k1s0_featureflag.models import (
    BooleanFlag,
    ClientStatus,
    EvaluationContext,
    EvaluationMode,
    EvaluationSource,
    FlagDefinitions,
    ListInfo,
)
from k1s0_featureflag.synchronizer import SyncState

BASE_URL = "http://flags-server:8080"

DEFINITIONS = {
    "flags": [
        {"key": "new-checkout", "type": "boolean", "defaultValue": True},
        {
            "key": "beta-feature",
            "type": "boolean",
            "defaultValue": False,
            "rules": [
                {
                    "conditions": [
                        {"attribute": "key", "operator": "in_list", "value": "beta"}
                    ],
                    "result": True,
                }
            ],
        },
        {
            "key": "greeting",
            "type": "string",
            "defaultValue": "hello",
            "rules": [
                {
                    "conditions": [{"attribute": "country", "operator": "equals", "value": "JP"}],
                    "result": "konnichiwa",
                }
            ],
        },
    ],
    "lists": [{"key": "beta", "salt": "salt-1", "members": []}],
    "cursor": "c-1",
}


def make_client(**overrides: Any) -> HttpFeatureFlagClient:
    values: dict[str, Any] = {
        "sdk_key": "sdk-test",
        "base_url": BASE_URL,
        "disable_streaming": True,
        "polling_interval_seconds": 3600,
    }
    offline_flags = overrides.pop("offline_flags", ())
    values.update(overrides)
    return HttpFeatureFlagClient(FeatureFlagConfig(**values), offline_flags=offline_flags)


def mock_definitions(status: int = 200) -> respx.Route:
    if status == 200:
        return respx.get(f"{BASE_URL}/sdk/definitions").mock(
            return_value=httpx.Response(200, json=DEFINITIONS)
        )
    return respx.get(f"{BASE_URL}/sdk/definitions").mock(return_value=httpx.Response(status))


@respx.mock
async def test_initialize_loads_definitions() -> None:
    """初期化でフラグ定義を取得し READY になること。"""
    mock_definitions()
    client = make_client()
    assert client.status == ClientStatus.LOADING

    await client.initialize()
    try:
        await client.wait_for_initialization()
        assert client.status == ClientStatus.READY
        assert client.is_enabled("new-checkout") is True
        assert client.store.get_cursor() == "c-1"
    finally:
        await client.close()
    assert client.synchronizer.state is SyncState.CLOSED


@respx.mock
async def test_initialize_failure_uses_offline_flags() -> None:
    """初回取得に失敗しても例外は送出せず、オフラインフラグで評価すること。"""
    mock_definitions(status=500)
    client = make_client(offline_flags=[BooleanFlag(key="offline", default_value=True)])

    await client.initialize()
    try:
        assert client.status == ClientStatus.ERROR
        assert client.is_enabled("offline") is True
        result = client.evaluate("new-checkout", fallback=False)
        assert result.source == EvaluationSource.FALLBACK
        assert [e.code for e in client.errors.drain()] == [FeatureFlagErrorCodes.HTTP_ERROR]
    finally:
        await client.close()


@respx.mock
async def test_async_context_manager() -> None:
    mock_definitions()
    async with make_client() as client:
        assert client.status == ClientStatus.READY
        assert client.get("greeting", EvaluationContext(attributes={"country": "JP"})) == "konnichiwa"
    assert client.synchronizer.closed is True


@respx.mock
async def test_reload_failure_raises_and_reports() -> None:
    route = mock_definitions()
    async with make_client() as client:
        route.mock(return_value=httpx.Response(503))
        with pytest.raises(FeatureFlagError) as exc_info:
            await client.reload()
        assert exc_info.value.code == FeatureFlagErrorCodes.HTTP_ERROR
        assert client.status == ClientStatus.ERROR
        assert len(client.errors) == 1
        # 失敗しても直前の定義で評価を続ける
        assert client.is_enabled("new-checkout") is True


class FailingLoader(HttpLoader):
    """fail を立てると定義取得が想定外の例外で失敗する HttpLoader。"""

    fail = False

    async def get_flag_definitions(self) -> FlagDefinitions:
        if self.fail:
            raise RuntimeError("loader exploded")
        return await super().get_flag_definitions()


@respx.mock
async def test_reload_unexpected_failure_sets_error_and_reraises() -> None:
    """ライブラリ外の例外でも status を ERROR にし、報告してから送出すること。"""
    mock_definitions()
    config = FeatureFlagConfig(
        sdk_key="sdk-test",
        base_url=BASE_URL,
        disable_streaming=True,
        polling_interval_seconds=3600,
    )
    loader = FailingLoader(config)
    async with HttpFeatureFlagClient(config, loader=loader) as client:
        loader.fail = True
        with pytest.raises(RuntimeError):
            await client.reload()
        assert client.status == ClientStatus.ERROR
        errors = client.errors.drain()
        assert [e.code for e in errors] == [FeatureFlagErrorCodes.SYNC_ERROR]
        assert isinstance(errors[0].__cause__, RuntimeError)


@respx.mock
async def test_initialize_keeps_offline_flags_not_on_server() -> None:
    """初回取得はオフラインフラグに上書きで重ね、サーバーに無いものは残すこと。"""
    mock_definitions()
    offline = [
        BooleanFlag(key="offline", default_value=True),
        BooleanFlag(key="new-checkout", default_value=False),
    ]
    async with make_client(offline_flags=offline) as client:
        assert client.status == ClientStatus.READY
        assert client.is_enabled("offline") is True
        assert client.is_enabled("new-checkout") is True
        assert client.store.get("greeting") is not None


@respx.mock
async def test_identify_local_mode_publishes_context_update() -> None:
    mock_definitions()
    async with make_client() as client:
        client.updates.drain()
        await client.identify(EvaluationContext(key="user-1", attributes={"country": "JP"}))
        assert client.get("greeting") == "konnichiwa"
        assert [u.kind for u in client.updates.drain()] == [UpdateKind.CONTEXT]


@respx.mock
async def test_identify_remote_mode_refetches() -> None:
    """remote モードではコンテキストに対する評価済みフラグを取得し直すこと。"""
    route = respx.post(f"{BASE_URL}/sdk/flags/evaluate/all").mock(
        return_value=httpx.Response(
            200,
            json={"flags": [{"key": "vip", "type": "boolean", "defaultValue": False, "value": True}]},
        )
    )
    async with make_client(evaluation_mode=EvaluationMode.REMOTE) as client:
        await client.identify(EvaluationContext(key="user-9"))
        assert client.is_enabled("vip") is True

    assert route.call_count == 2
    body = json.loads(route.calls.last.request.content)
    assert body == {"context": {"key": "user-9"}}


@respx.mock
async def test_add_to_list_updates_local_membership() -> None:
    """リスト追加後はローカルのリストにも反映され、評価に効くこと。"""
    mock_definitions()
    respx.post(f"{BASE_URL}/sdk/lists/beta/users").mock(return_value=httpx.Response(204))
    respx.delete(f"{BASE_URL}/sdk/lists/beta/users").mock(return_value=httpx.Response(204))
    ctx = EvaluationContext(key="user-1")

    async with make_client() as client:
        assert client.is_enabled("beta-feature", ctx) is False

        await client.add_to_list("beta", ["user-1", {"key": "user-2"}])
        assert client.is_enabled("beta-feature", ctx) is True
        members = client.store.lists.get("beta").members
        assert hash_member("salt-1", "user-2") in members
        assert "user-1" not in members

        await client.remove_from_list("beta", ["user-1"])
        assert client.is_enabled("beta-feature", ctx) is False


@respx.mock
async def test_create_and_delete_list() -> None:
    mock_definitions()
    respx.post(f"{BASE_URL}/sdk/lists").mock(
        return_value=httpx.Response(201, json={"key": "gamma", "name": "Gamma"})
    )
    respx.delete(f"{BASE_URL}/sdk/lists/gamma").mock(return_value=httpx.Response(204))

    async with make_client() as client:
        info = await client.create_list(ListInfo(key="gamma", name="Gamma"))
        assert info.name == "Gamma"
        assert client.store.lists.get("gamma") is not None

        await client.delete_list("gamma")
        assert client.store.lists.get("gamma") is None


@respx.mock
async def test_list_error_propagates() -> None:
    mock_definitions()
    respx.delete(f"{BASE_URL}/sdk/lists/missing").mock(return_value=httpx.Response(404))
    async with make_client() as client:
        with pytest.raises(FeatureFlagError) as exc_info:
            await client.delete_list("missing")
    assert exc_info.value.code == FeatureFlagErrorCodes.LIST_NOT_FOUND


@respx.mock
async def test_close_is_idempotent() -> None:
    mock_definitions()
    client = make_client()
    await client.initialize()
    await client.close()
    await client.close()
    assert client.synchronizer.state is SyncState.CLOSED
