"""Server-Sent Events の行パーサー"""

from __future__ import annotations


class SseParser:
    """行単位で SSE を解析し、完成した data メッセージを返す。

    data 行は改行で連結し、空行でメッセージを確定する。":" で始まるコメント行
    (キープアライブ) と data 以外のフィールドは無視する。
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed_line(self, line: str) -> str | None:
        """1 行を処理する。メッセージが確定した場合はその data を返す。"""
        line = line.rstrip("\r\n")
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None
        name, sep, value = line.partition(":")
        if name != "data":
            return None
        if sep and value.startswith(" "):
            value = value[1:]
        self._data.append(value)
        return None

    def reset(self) -> None:
        """未確定の data を破棄する。終端で途切れたメッセージは配信しない。"""
        self._data = []

    def _dispatch(self) -> str | None:
        if not self._data:
            return None
        message = "\n".join(self._data)
        self._data = []
        return message
