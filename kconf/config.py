# kconf/config.py

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional, Set, Tuple, Union

from .codec import Document, DocumentCodec, LineCodec, get_codec
from .errors import StaleWriteError
from .lock import RWLock
from .utils import now, resolve_config_dir, write_file

log = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class StoreOptions:
    """
    构造 ConfigStore 时传入的显式配置，取代包级别的可变默认值。

    Attributes:
        codec: 持久化格式，"json"（文档格式）或 "lines"（key=value 行格式）。
        dir_mode: 创建配置目录时使用的权限位。
        file_mode: 写入配置文件时使用的权限位。
        atomic: 是否通过临时文件 + 重命名的方式原子地替换配置文件。
        resolve_dir: 未显式指定目录时用于解析默认目录的函数。
    """
    codec: str = "json"
    dir_mode: int = 0o700
    file_mode: int = 0o600
    atomic: bool = True
    resolve_dir: Callable[[], Path] = resolve_config_dir


class ConfigStore:
    """
    一个持久化的扁平字符串键值配置。

    内存中的数据由读写锁保护：get/keys 共享，set/save/load 等独占。
    多个进程之间没有锁，save() 通过比较磁盘上的 saved 时间戳来检测冲突，
    避免静默覆盖其它进程写入的更新。
    """

    def __init__(self, dir: Optional[PathLike] = None, file: Optional[str] = None,
                 options: Optional[StoreOptions] = None):
        """
        初始化配置存储。不会读取或创建任何文件，需要时请调用 load()。

        Args:
            dir (PathLike): 配置文件所在目录，相对路径会被转为绝对路径。
                默认为 options.resolve_dir() 的结果。
            file (str): 配置文件名，默认取决于格式（"config.json" 或 "values"）。
            options (StoreOptions): 存储选项。
        """
        self.options = options or StoreOptions()
        self.codec = get_codec(self.options.codec)
        if dir is None:
            dir = self.options.resolve_dir()
        self.dir = Path(dir).expanduser().absolute()
        self.file = file or self.codec.default_file

        self.data: Dict[str, str] = {}
        self.saved: Optional[datetime] = None
        self.updated: Optional[datetime] = None
        self._unsaved = False
        self._lock = RWLock()

    def __repr__(self) -> str:
        return f"<ConfigStore path={str(self.path)!r} keys={len(self.data)}>"

    @classmethod
    def from_json(cls, raw: Union[bytes, str], *args, **kwargs) -> 'ConfigStore':
        """从 JSON 文档创建实例。其余参数与构造函数相同。"""
        store = cls(*args, **kwargs)
        store._replace(DocumentCodec().decode(raw))
        return store

    @classmethod
    def from_lines(cls, raw: Union[bytes, str], *args, **kwargs) -> 'ConfigStore':
        """从 key=value 行格式的内容创建实例。"""
        store = cls(*args, **kwargs)
        store._replace(LineCodec().decode(raw))
        return store

    @classmethod
    def from_file(cls, path: PathLike, *args, **kwargs) -> 'ConfigStore':
        """
        读取指定文件并创建实例。

        path 只用于读取，不会成为实例的 dir/file；如果不想使用默认位置，
        需要另外传入 dir 和 file。文件按实例配置的格式解码。

        Raises:
            OSError: 文件无法读取时。
            CodecError: 文件内容无法解码时。
        """
        store = cls(*args, **kwargs)
        store._replace(store.codec.decode(Path(path).read_bytes()))
        return store

    @property
    def path(self) -> Path:
        """配置文件的绝对路径，不检查是否存在。"""
        return self.dir / self.file

    # --- 内存中的读写 ---

    def get(self, key: str) -> str:
        """返回 key 对应的值；不存在时返回空字符串。"""
        with self._lock.read():
            return self.data.get(key, "")

    def set(self, key: str, value: str) -> None:
        """
        设置一个值并更新 updated 时间戳，但不会保存。

        值中的换行不会被自动转义，需要时请先调用 kconf.codec.escape()。
        """
        with self._lock.write():
            self.data[key] = value
            self.updated = now()
            self._unsaved = True

    def delete(self, key: str) -> None:
        """删除一个键（不存在时什么也不做），但不会保存。"""
        with self._lock.write():
            if key in self.data:
                del self.data[key]
                self.updated = now()
                self._unsaved = True

    def keys(self) -> Set[str]:
        with self._lock.read():
            return set(self.data)

    def snapshot(self) -> Dict[str, str]:
        """返回数据的副本，便于在不持有锁的情况下遍历。"""
        with self._lock.read():
            return dict(self.data)

    def longest_key(self) -> Tuple[str, int]:
        """返回最长的键及其长度，数据为空时返回 ("", 0)。"""
        with self._lock.read():
            key = max(self.data, key=len, default="")
        return key, len(key)

    def set_save(self, key: str, value: str) -> None:
        self.set(key, value)
        self.save()

    def set_force_save(self, key: str, value: str) -> None:
        self.set(key, value)
        self.force_save()

    # --- 编解码 ---

    def serialize(self) -> bytes:
        """
        按实例配置的格式编码当前状态。

        Raises:
            SerializationError: 数据无法被编码时。
        """
        with self._lock.write():
            return self.codec.encode(self._document(self.saved))

    def parse(self, raw: Union[bytes, str]) -> None:
        """
        按实例配置的格式解析内容，并合并到当前数据中。

        合并是增量的：同名键被覆盖，其它键保留。解析失败时数据保持不变。

        Raises:
            CodecError: 内容无法解析时（行格式为 ParseError）。
        """
        with self._lock.write():
            doc = self.codec.decode(raw, into=self.data)
            self.data = doc.data
            self.updated = now()
            self._unsaved = True

    # --- 持久化 ---

    def save(self) -> None:
        """
        保存到 path，但拒绝覆盖比本实例最后一次同步更新的文件。

        如果磁盘上文件的 saved 时间晚于本实例最后一次保存或加载的时间
        （从未保存或加载过时使用 updated），说明另一个进程在此之后写入了新版本。

        Raises:
            StaleWriteError: 检测到磁盘上的版本更新时，不会写入任何内容。
            OSError: 创建目录、读取或写入文件失败时。
            CodecError: 磁盘上的文件无法解码，或当前数据无法编码时。
        """
        with self._lock.write():
            ondisk = self._check_stale()
            if (ondisk is not None and not self._unsaved
                    and ondisk.saved is not None and ondisk.saved == self.saved):
                log.debug("配置 %s 没有变更，跳过写入", self.path)
                return
            self._write(self._document(now()))

    def force_save(self) -> None:
        """与 save() 相同，但跳过冲突检测，总是覆盖。"""
        with self._lock.write():
            self._write(self._document(now()))

    def init(self) -> None:
        """
        清空数据并立即保存一个只包含元数据的新文件。

        警告：如果文件已存在，其中的数据会被清除。
        """
        with self._lock.write():
            self.data = {}
            self._write(self._document(now()))

    def load(self) -> None:
        """
        从 path 重新加载，丢弃内存中所有未保存的修改。

        如果文件不存在，会先创建一个空的配置文件，因此调用后 path 一定存在。
        解码失败时内存中的状态保持不变。

        Raises:
            OSError: 文件无法创建或读取时。
            CodecError: 文件内容无法解码时。
        """
        with self._lock.write():
            if not self.path.exists():
                log.debug("配置文件 %s 不存在，创建空配置", self.path)
                self._write(Document(saved=now(), dir=str(self.dir), file=self.file),
                            commit=False)
            doc = self.codec.decode(self.path.read_bytes())
            self._replace(doc)
            log.debug("已加载配置 %s (%d 项)", self.path, len(self.data))

    # --- 内部实现，调用方需持有写锁 ---

    def _document(self, saved: Optional[datetime]) -> Document:
        return Document(data=dict(self.data), saved=saved, updated=self.updated,
                        dir=str(self.dir), file=self.file)

    def _replace(self, doc: Document) -> None:
        self.data = doc.data
        self.saved = doc.saved
        self.updated = doc.updated
        self._unsaved = False

    def _check_stale(self) -> Optional[Document]:
        if not self.path.exists():
            return None
        ondisk = self.codec.decode(self.path.read_bytes())
        if ondisk.saved is None:
            return ondisk
        synced = self.saved or self.updated
        if synced is None or ondisk.saved > synced:
            log.warning("配置文件 %s 已被其它进程更新 (saved=%s)，拒绝覆盖",
                        self.path, ondisk.saved.isoformat())
            raise StaleWriteError(self.path, ondisk.saved, synced)
        return ondisk

    def _write(self, doc: Document, commit: bool = True) -> None:
        # 先编码，编码失败时不创建目录也不改动任何状态
        raw = self.codec.encode(doc)
        if not self.dir.is_dir():
            log.debug("创建配置目录 %s", self.dir)
            self.dir.mkdir(mode=self.options.dir_mode,
                           parents=True, exist_ok=True)
        write_file(self.path, raw, mode=self.options.file_mode,
                   atomic=self.options.atomic)
        if commit:
            self.saved = doc.saved
            self._unsaved = False
        log.debug("已保存配置 %s", self.path)
