"""同期とローカル評価を組み合わせた HttpFeatureFlagClient"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from types import TracebackType

from .channels import EventChannel, FlagsUpdated, UpdateKind
from .client import EvaluatingClient
from .config import FeatureFlagConfig
from .exceptions import FeatureFlagErrorCodes
from .hashing import hash_member
from .http_loader import HttpLoader
from .loader import Loader, UserEntry
from .models import ClientStatus, EvaluationContext, EvaluationMode, Flag, FlagList, ListInfo
from .store import FlagStore
from .synchronizer import Synchronizer
from .telemetry import TelemetrySink

logger = logging.getLogger(__name__)


def _user_key(user: UserEntry) -> str:
    if isinstance(user, Mapping):
        return str(user["key"])
    return user


class HttpFeatureFlagClient(EvaluatingClient):
    """フラグサービスと同期しながらローカルでフラグを評価するクライアント。

    使い方:
        async with HttpFeatureFlagClient(FeatureFlagConfig(sdk_key="...")) as client:
            if client.is_enabled("new-checkout", EvaluationContext(key="user-1")):
                ...
    """

    def __init__(
        self,
        config: FeatureFlagConfig,
        loader: Loader | None = None,
        offline_flags: Iterable[Flag] = (),
        context: EvaluationContext | None = None,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        store = FlagStore(offline_flags)
        if context is not None:
            store.set_context(context)
        super().__init__(
            store,
            mode=config.evaluation_mode,
            telemetry=telemetry,
            errors=EventChannel(config.event_buffer_size),
        )
        self._config = config
        self._loader = loader if loader is not None else HttpLoader(config)
        self._updates: EventChannel[FlagsUpdated] = EventChannel(config.event_buffer_size)
        self._synchronizer = Synchronizer(
            config, self._loader, store, errors=self._errors, updates=self._updates
        )
        self._status = ClientStatus.LOADING
        self._initialized = asyncio.Event()

    @property
    def config(self) -> FeatureFlagConfig:
        return self._config

    @property
    def loader(self) -> Loader:
        return self._loader

    @property
    def synchronizer(self) -> Synchronizer:
        return self._synchronizer

    @property
    def updates(self) -> EventChannel[FlagsUpdated]:
        return self._updates

    @property
    def status(self) -> ClientStatus:
        return self._status

    async def initialize(self) -> None:
        """初回のフル取得を行い、同期を開始する。

        取得したフラグはオフラインフラグに上書きで重ね、サーバーに無いオフラインフラグは残す。
        取得に失敗しても例外は送出せず、status を ERROR にしてエラーを報告する。
        オフラインフラグがあればそれで評価を続け、同期側が回復を試みる。
        """
        if self._initialized.is_set():
            return
        try:
            await self._synchronizer.resync(keep_existing=True)
            self._status = ClientStatus.READY
        except Exception as e:
            self._status = ClientStatus.ERROR
            self._report(e, FeatureFlagErrorCodes.SYNC_ERROR)
        logger.info(
            "Feature flag client initialized",
            extra={"status": self._status.value, "flag_count": len(self._store.get_all())},
        )
        self._initialized.set()
        self._synchronizer.start()

    async def wait_for_initialization(self) -> None:
        await self._initialized.wait()

    async def identify(self, context: EvaluationContext) -> None:
        """評価コンテキストを切り替える。

        remote モードではコンテキストに対する評価済みフラグを取得し直す。
        """
        self._store.set_context(context)
        if self._config.evaluation_mode is not EvaluationMode.REMOTE:
            self._updates.publish(
                FlagsUpdated(kind=UpdateKind.CONTEXT, flag_count=len(self._store.get_all()))
            )
            return
        await self.reload()

    async def reload(self) -> None:
        """フラグ定義を丸ごと取得し直す。

        取得に失敗した場合は status を ERROR にしてエラーチャネルに報告し、
        元の例外をそのまま送出する。
        """
        self._status = ClientStatus.LOADING
        try:
            await self._synchronizer.resync()
        except Exception as e:
            self._status = ClientStatus.ERROR
            self._report(e, FeatureFlagErrorCodes.SYNC_ERROR)
            raise
        self._status = ClientStatus.READY

    async def create_list(self, info: ListInfo) -> ListInfo:
        """リストを作成する。ソルトは次回の定義取得で反映される。"""
        created = await self._loader.create_list(info)
        if self._store.lists.get(info.key) is None:
            self._store.lists.create(FlagList(key=info.key))
        return created

    async def delete_list(self, list_key: str) -> None:
        await self._loader.delete_list(list_key)
        self._store.lists.delete(list_key)

    async def add_to_list(self, list_key: str, users: Iterable[UserEntry]) -> object:
        """リストにユーザーを追加し、ソルトが分かっていればローカルのリストにも反映する。"""
        users = list(users)
        result = await self._loader.add_to_list(list_key, users)
        salt = self._store.lists.get_salt(list_key)
        if salt is not None:
            self._store.lists.add(list_key, [hash_member(salt, _user_key(u)) for u in users])
        return result

    async def remove_from_list(self, list_key: str, user_keys: Iterable[str]) -> None:
        user_keys = list(user_keys)
        await self._loader.remove_from_list(list_key, user_keys)
        salt = self._store.lists.get_salt(list_key)
        if salt is not None:
            self._store.lists.remove(list_key, [hash_member(salt, key) for key in user_keys])

    async def close(self) -> None:
        """同期を停止する。冪等。"""
        await self._synchronizer.close()

    async def __aenter__(self) -> HttpFeatureFlagClient:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
