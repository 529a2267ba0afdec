# kconf/errors.py

from datetime import datetime
from pathlib import Path
from typing import Optional

# --- 自定义异常类 ---


class ConfigError(Exception):
    """kconf 所有业务异常的基类。I/O 失败仍以 OSError 原样抛出。"""
    pass


class CodecError(ConfigError):
    """编码或解码配置文档失败时引发。"""
    pass


class ParseError(CodecError):
    """
    行格式 (key=value) 解析失败时引发。

    携带出错的行号（从 1 开始）和该行的原始文本。
    """

    def __init__(self, lineno: int, line: str):
        super().__init__(f"invalid config (line {lineno}): {line}")
        self.lineno = lineno
        self.line = line


class SerializationError(CodecError):
    """内存中的数据无法被编码为目标格式时引发。"""
    pass


class StaleWriteError(ConfigError):
    """
    磁盘上的配置比当前实例最后一次同步时更新。

    这是可恢复的情况：调用方应先 load() 刷新，再重新应用修改并保存。

    Attributes:
        path: 配置文件路径。
        disk_saved: 磁盘上文件的 saved 时间。
        synced: 本实例最后一次同步的时间（saved，从未同步过时为 updated）。
    """

    def __init__(self, path: Path, disk_saved: Optional[datetime] = None,
                 synced: Optional[datetime] = None):
        super().__init__("Newer config file detected.")
        self.path = path
        self.disk_saved = disk_saved
        self.synced = synced
