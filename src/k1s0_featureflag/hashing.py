"""リストメンバーのハッシュ化とロールアウト用バケット計算"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any

BUCKET_COUNT = 10000


def member_text(value: Any) -> str:
    """ハッシュ対象の文字列表現。

    真偽値は "true" / "false"、整数値の float は整数表記 (1.0 -> "1") にそろえ、
    JSON 由来の値と同じ文字列になるようにする。
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def hash_member(salt: str, value: Any) -> str:
    """リストのソルトで値を HMAC-SHA256 し、16 進ダイジェストを返す。"""
    return hmac.new(salt.encode(), member_text(value).encode(), hashlib.sha256).hexdigest()


def get_bucket(bucket_key: str) -> float:
    """バケットキーを [0, 100) の位置に写像する。

    SHA-256 の先頭 4 バイトを 10000 バケットに割り当て、百分率に換算する。
    同じキーは常に同じ位置になる。
    """
    digest = hashlib.sha256(bucket_key.encode()).digest()
    return (int.from_bytes(digest[:4], byteorder="big") % BUCKET_COUNT) / 100
