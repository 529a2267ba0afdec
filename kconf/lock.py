# kconf/lock.py

import threading
from contextlib import contextmanager


class RWLock:
    """
    进程内的读写锁：允许多个读者并发，写者独占。

    写者优先：一旦有写者在等待，新的读者会被挡住，避免写者饿死。
    该锁不可重入，同一线程不要在持有锁时再次获取。
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            except BaseException:
                # 放弃获取时唤醒被挡住的读者
                self._waiting_writers -= 1
                self._cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self):
        """共享锁的上下文管理器。"""
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self):
        """独占锁的上下文管理器。"""
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
