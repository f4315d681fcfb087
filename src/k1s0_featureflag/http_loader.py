"""フラグサービス HTTP Loader 実装"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

import httpx

from .changes import ChangesPage
from .config import FeatureFlagConfig
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .loader import Loader, UserEntry
from .models import EvaluationContext, Flag, FlagDefinitions, ListInfo
from .sse import SseParser


def _user_payload(users: Iterable[UserEntry]) -> list[dict[str, Any]]:
    return [{"key": user} if isinstance(user, str) else dict(user) for user in users]


async def _iter_sse_messages(resp: httpx.Response) -> AsyncIterator[str]:
    parser = SseParser()
    async for line in resp.aiter_lines():
        message = parser.feed_line(line)
        if message is not None:
            yield message
    parser.reset()


class HttpLoader(Loader):
    """httpx を使ったフラグサービス HTTP クライアント。"""

    def __init__(self, config: FeatureFlagConfig) -> None:
        self._config = config
        self._headers: dict[str, str] = {
            "Content-Type": "application/json",
            "X-SDK-Key": config.sdk_key,
        }

    def _make_client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            headers=self._headers,
            timeout=self._config.timeout_seconds if timeout is None else timeout,
        )

    def _handle_error(self, resp: httpx.Response, context: str, not_found: str) -> None:
        if resp.status_code in (401, 403):
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.UNAUTHORIZED,
                message=f"{context}: HTTP {resp.status_code}: invalid SDK key",
            )
        if resp.status_code == 404:
            raise FeatureFlagError(
                code=not_found,
                message=f"{context}: not found",
            )
        if resp.status_code >= 400:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.HTTP_ERROR,
                message=f"{context}: HTTP {resp.status_code}: {resp.text}",
            )

    async def _request(
        self,
        method: str,
        path: str,
        context: str,
        *,
        not_found: str = FeatureFlagErrorCodes.FLAG_NOT_FOUND,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            async with self._make_client() as client:
                resp = await client.request(method, path, params=params, json=json)
            self._handle_error(resp, context, not_found)
            if resp.status_code == 204 or not resp.content:
                return None
            return resp.json()
        except FeatureFlagError:
            raise
        except httpx.TransportError as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.CONNECTION_ERROR,
                message=f"{context}: {e}",
                cause=e,
            ) from e
        except ValueError as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.MALFORMED_PAYLOAD,
                message=f"{context}: invalid JSON response: {e}",
                cause=e,
            ) from e
        except Exception as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.HTTP_ERROR,
                message=f"{context}: {e}",
                cause=e,
            ) from e

    async def get_flags(self, context: EvaluationContext | None = None) -> list[Flag]:
        data = await self._request(
            "POST",
            "/sdk/flags/evaluate/all",
            "get_flags",
            json={"context": context.to_dict() if context is not None else {}},
        )
        try:
            return [Flag.from_dict(f) for f in (data or {}).get("flags", [])]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.MALFORMED_PAYLOAD,
                message=f"get_flags: invalid flag payload: {e}",
                cause=e,
            ) from e

    async def get_flag_definitions(self) -> FlagDefinitions:
        data = await self._request("GET", "/sdk/definitions", "get_flag_definitions")
        try:
            return FlagDefinitions.from_dict(data or {})
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.MALFORMED_PAYLOAD,
                message=f"get_flag_definitions: invalid definitions payload: {e}",
                cause=e,
            ) from e

    async def get_changes(self, cursor: str) -> ChangesPage:
        data = await self._request(
            "GET",
            "/sdk/changes",
            f"get_changes({cursor})",
            params={"since": cursor},
        )
        if data is not None and not isinstance(data, Mapping):
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.MALFORMED_PAYLOAD,
                message=f"get_changes({cursor}): response must be an object",
            )
        return ChangesPage.from_dict(data or {})

    async def create_list(self, info: ListInfo) -> ListInfo:
        data = await self._request("POST", "/sdk/lists", "create_list", json=info.to_dict())
        return ListInfo.from_dict(data) if data else info

    async def delete_list(self, list_key: str) -> None:
        await self._request(
            "DELETE",
            f"/sdk/lists/{list_key}",
            f"delete_list({list_key})",
            not_found=FeatureFlagErrorCodes.LIST_NOT_FOUND,
        )

    async def add_to_list(self, list_key: str, users: Iterable[UserEntry]) -> Any:
        return await self._request(
            "POST",
            f"/sdk/lists/{list_key}/users",
            f"add_to_list({list_key})",
            not_found=FeatureFlagErrorCodes.LIST_NOT_FOUND,
            json={"userKeys": _user_payload(users)},
        )

    async def remove_from_list(self, list_key: str, user_keys: Iterable[str]) -> None:
        await self._request(
            "DELETE",
            f"/sdk/lists/{list_key}/users",
            f"remove_from_list({list_key})",
            not_found=FeatureFlagErrorCodes.LIST_NOT_FOUND,
            json={"userKeys": list(user_keys)},
        )

    @property
    def supports_streaming(self) -> bool:
        return True

    @contextlib.asynccontextmanager
    async def stream_changes(self, cursor: str | None) -> AsyncIterator[AsyncIterator[str]]:
        """SSE で変更ストリームを購読する。"""
        params = {"since": cursor} if cursor else None
        try:
            async with self._make_client(timeout=None) as client:
                async with client.stream(
                    "GET",
                    "/sdk/changes/stream",
                    params=params,
                    headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        self._handle_error(
                            resp, "stream_changes", FeatureFlagErrorCodes.STREAM_ERROR
                        )
                    yield _iter_sse_messages(resp)
        except FeatureFlagError:
            raise
        except httpx.TransportError as e:
            raise FeatureFlagError(
                code=FeatureFlagErrorCodes.STREAM_ERROR,
                message=f"stream_changes: {e}",
                cause=e,
            ) from e
