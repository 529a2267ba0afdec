# kconf/codec.py

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

from .errors import CodecError, ParseError, SerializationError


@dataclass
class Document:
    """一份持久化配置文档的内容：扁平的字符串映射加上元数据。"""
    data: Dict[str, str] = field(default_factory=dict)
    saved: Optional[datetime] = None
    updated: Optional[datetime] = None
    dir: str = ""
    file: str = ""


# 小数秒统一补齐或截断为 6 位（微秒）
_FRACTION_RE = re.compile(r"\.(\d+)")


def format_iso(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    return ts.isoformat()


def parse_iso(value) -> Optional[datetime]:
    """
    将 ISO-8601 字符串解析为带时区的 datetime。

    空值和零值时间（公元 1 年）返回 None；不带时区的时间按 UTC 处理。

    Raises:
        CodecError: 如果值不是可解析的时间字符串。
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise CodecError(f"invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + (m.group(1) + "000000")[:6], text)
    try:
        ts = datetime.fromisoformat(text)
    except ValueError as e:
        raise CodecError(f"invalid timestamp: {value!r}") from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    if ts.year == 1:
        return None
    return ts


def _decode_text(raw: bytes) -> str:
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CodecError(f"config is not valid UTF-8: {e}") from e


def _encode_text(text: str) -> bytes:
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise SerializationError(f"unsupported characters in config: {e}") from e


class DocumentCodec:
    """
    JSON 文档格式：一个自描述对象，包含目录、文件名、数据和两个时间戳。

        {"dir": "...", "file": "...", "data": {...}, "saved": "...", "updated": "..."}

    输出为单行紧凑 JSON，未设置的时间戳和空的 dir/file 字段会被省略。
    """
    name = "json"
    default_file = "config.json"

    def encode(self, doc: Document) -> bytes:
        for key, value in doc.data.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise SerializationError(
                    f"config keys and values must be strings: {key!r}={value!r}")

        payload = {}
        if doc.dir:
            payload["dir"] = str(doc.dir)
        if doc.file:
            payload["file"] = doc.file
        payload["data"] = doc.data
        if doc.saved is not None:
            payload["saved"] = format_iso(doc.saved)
        if doc.updated is not None:
            payload["updated"] = format_iso(doc.updated)

        try:
            text = json.dumps(payload, ensure_ascii=False,
                              separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise SerializationError(str(e)) from e
        return _encode_text(text)

    def decode(self, raw: bytes, into: Optional[Mapping[str, str]] = None) -> Document:
        """
        解码 JSON 文档。

        Args:
            raw (bytes): 文件内容。
            into (Mapping[str, str]): 可选的已有数据，解码出的键值会合并进去（覆盖同名键）。

        Returns:
            Document: 新的文档对象，不会修改 into 本身。

        Raises:
            CodecError: JSON 无效或结构不符合要求时。
        """
        try:
            obj = json.loads(_decode_text(raw))
        except json.JSONDecodeError as e:
            raise CodecError(f"invalid config document: {e}") from e

        if not isinstance(obj, dict):
            raise CodecError("config document must be a JSON object")

        data = obj.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise CodecError("config 'data' must be a JSON object")
        for key, value in data.items():
            if not isinstance(value, str):
                raise CodecError(
                    f"config value for {key!r} must be a string")

        merged = dict(into) if into else {}
        merged.update(data)
        return Document(
            data=merged,
            saved=parse_iso(obj.get("saved")),
            updated=parse_iso(obj.get("updated")),
            dir=obj.get("dir") or "",
            file=obj.get("file") or "",
        )


class LineCodec:
    """
    行格式：每行一个 key=value。

    * 每行必须恰好包含一个等号 (=)
    * 等号两侧的空白不会被忽略
    * 行以 \\r?\\n 结尾
    * 空行在解析时被跳过，写出时不会产生
    * 不支持注释和引号

    该格式不保存时间戳，因此基于行格式的存储永远不会触发冲突检测。
    """
    name = "lines"
    default_file = "values"

    def encode(self, doc: Document) -> bytes:
        lines = []
        for key in sorted(doc.data):
            value = doc.data[key]
            if not isinstance(key, str) or not isinstance(value, str):
                raise SerializationError(
                    f"config keys and values must be strings: {key!r}={value!r}")
            for part in (key, value):
                if "=" in part or "\n" in part or "\r" in part:
                    raise SerializationError(
                        f"cannot write {part!r} in line format: "
                        "'=' and line endings are not allowed")
            lines.append(f"{key}={value}\n")
        return _encode_text("".join(lines))

    def decode(self, raw: bytes, into: Optional[Mapping[str, str]] = None) -> Document:
        """
        解析 key=value 行，遇到第一行错误即整体失败，不返回部分结果。

        解析是增量的：结果在 into 的基础上覆盖同名键，不删除其它键。

        Raises:
            ParseError: 某行没有或有多于一个等号时。
        """
        parsed: Dict[str, str] = {}
        for lineno, line in enumerate(_decode_text(raw).split("\n"), start=1):
            if line.endswith("\r"):
                line = line[:-1]
            if not line:
                continue
            fields = line.split("=")
            if len(fields) != 2:
                raise ParseError(lineno, line)
            parsed[fields[0]] = fields[1]

        merged = dict(into) if into else {}
        merged.update(parsed)
        return Document(data=merged)


CODECS = {
    DocumentCodec.name: DocumentCodec,
    LineCodec.name: LineCodec,
}


def get_codec(name: str):
    """根据名称返回编解码器实例（"json" 或 "lines"）。"""
    try:
        return CODECS[name]()
    except KeyError:
        raise ValueError(
            f"unknown config format {name!r}, expected one of: {', '.join(sorted(CODECS))}")


_UNESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n"}


def escape(value: str) -> str:
    """将反斜杠和 CR/LF 转义为两个字符的序列，便于安全地写入行格式。"""
    return value.replace("\\", "\\\\").replace("\r", "\\r").replace("\n", "\\n")


def unescape(value: str) -> str:
    """escape() 的逆操作。未知的转义序列原样保留。"""
    return _UNESCAPE_RE.sub(
        lambda m: _UNESCAPES.get(m.group(1), m.group(0)), value)
