"""featureflag クライアント設定"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .models import EvaluationMode

CONFIG_SECTION = "featureflag"


class FeatureFlagConfig(BaseModel):
    """フィーチャーフラグクライアント設定。"""

    sdk_key: str = Field(min_length=1)
    base_url: str = "http://localhost:8080"
    timeout_seconds: float = Field(default=10.0, gt=0)
    # 0 以下でポーリングを無効化する
    polling_interval_seconds: float = 60.0
    disable_streaming: bool = False
    reconnect_delay_seconds: float = Field(default=1.0, ge=0)
    max_reconnect_attempts: int = Field(default=3, ge=0)
    evaluation_mode: EvaluationMode = EvaluationMode.LOCAL
    event_buffer_size: int = Field(default=100, ge=1)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    """YAML ファイルを読み込み、featureflag セクションがあればそれを返す。"""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.READ_FILE,
            message=f"Failed to read config file: {path}",
            cause=e,
        ) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.PARSE_YAML,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"Config root must be a mapping: {path}",
        )
    section = data.get(CONFIG_SECTION)
    return section if isinstance(section, dict) else data


def load_config(base_path: Path, env_path: Path | None = None) -> FeatureFlagConfig:
    """設定ファイルを読み込んで FeatureFlagConfig を返す。

    base_path: ベース設定ファイルパス（必須）
    env_path: 環境別設定ファイルパス（オプション）。存在する場合はベースにマージ。
    """
    data = _read_yaml(base_path)
    if env_path is not None and env_path.exists():
        data = _deep_merge(data, _read_yaml(env_path))
    try:
        return FeatureFlagConfig.model_validate(data)
    except ValidationError as e:
        raise FeatureFlagError(
            code=FeatureFlagErrorCodes.CONFIG_ERROR,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e
