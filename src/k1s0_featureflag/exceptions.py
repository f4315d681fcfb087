"""featureflag ライブラリの例外型定義"""

from __future__ import annotations


class FeatureFlagError(Exception):
    """featureflag ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class FeatureFlagErrorCodes:
    """エラーコード定数。"""

    FLAG_NOT_FOUND: str = "FLAG_NOT_FOUND"
    LIST_NOT_FOUND: str = "LIST_NOT_FOUND"
    CONNECTION_ERROR: str = "CONNECTION_ERROR"
    HTTP_ERROR: str = "HTTP_ERROR"
    UNAUTHORIZED: str = "UNAUTHORIZED"
    MALFORMED_PAYLOAD: str = "MALFORMED_PAYLOAD"
    STREAM_ERROR: str = "STREAM_ERROR"
    DEFAULT_VARIANT_NOT_FOUND: str = "DEFAULT_VARIANT_NOT_FOUND"
    CONFIG_ERROR: str = "CONFIG_ERROR"
    READ_FILE: str = "READ_FILE_ERROR"
    PARSE_YAML: str = "PARSE_YAML_ERROR"
    SYNC_ERROR: str = "SYNC_ERROR"
    EVALUATION_ERROR: str = "EVALUATION_ERROR"
