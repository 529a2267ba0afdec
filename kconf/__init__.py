# kconf/__init__.py

from .codec import Document, DocumentCodec, LineCodec, escape, get_codec, unescape
from .config import ConfigStore, StoreOptions
from .errors import (CodecError, ConfigError, ParseError, SerializationError,
                     StaleWriteError)
from .utils import resolve_config_dir

__version__ = "0.1.0"
