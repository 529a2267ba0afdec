# kconf/utils.py

import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def program_name() -> str:
    """返回当前程序的名称（可执行文件的基本名），用作默认配置子目录名。"""
    return Path(sys.argv[0] or "kconf").stem or "kconf"


def resolve_config_dir(name: Optional[str] = None) -> Path:
    """
    解析默认的配置目录。

    查找顺序：

        $XDG_CONFIG_HOME/<name>
        ~/.config/<name>    (如果 ~/.config 存在)
        ~/.<name>           (如果存在)

    都不满足时返回 ~/.config/<name>（无论是否存在）。

    Args:
        name (str): 配置子目录名，默认为当前程序名。

    Returns:
        Path: 配置目录的路径。不会创建该目录。
    """
    name = name or program_name()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / name

    home = Path.home()
    if (home / ".config").is_dir():
        return home / ".config" / name

    dotted = home / f".{name}"
    if dotted.exists():
        return dotted

    return home / ".config" / name


def now() -> datetime:
    """带 UTC 时区的当前时间。"""
    return datetime.now(timezone.utc)


def format_timestamp(ts: Optional[datetime]) -> str:
    """
    将时间格式化为易于阅读的本地时间字符串。

    Args:
        ts (datetime): 时间，None 表示从未设置。

    Returns:
        str: 格式化后的日期时间字符串，未设置时返回空字符串。
    """
    if ts is None:
        return ""
    return ts.astimezone().strftime('%Y-%m-%d %H:%M:%S')


def write_file(path: Path, content: bytes, mode: int = 0o600, atomic: bool = True) -> None:
    """
    将内容整体写入文件。

    atomic 为 True 时先写入同目录下的临时文件，刷盘后再原子地重命名到目标路径，
    这样其它进程永远不会读到写了一半的文件。

    Raises:
        OSError: 写入或重命名失败时。
    """
    if not atomic:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, 'wb') as f:
            f.write(content)
        return

    # mkstemp 创建的文件权限固定为 0600，需要时再调整
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode != 0o600:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
