"""按图片 id 加锁，保证同一图片的 读取-变换-写回 串行执行（单进程部署）。"""
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Optional

from .context import Deadline
from .errors import DeadlineExceededError


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLock:
    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key: Hashable, deadline: Optional[Deadline] = None) -> Iterator[None]:
        deadline = deadline or Deadline.never()
        with self._guard:
            entry = self._entries.setdefault(key, _Entry())
            entry.refs += 1
        try:
            remaining = deadline.remaining()
            acquired = entry.lock.acquire(timeout=-1 if remaining is None else remaining)
            if not acquired:
                raise DeadlineExceededError(f"等待 {key} 的锁超时")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._guard:
                entry.refs -= 1
                if entry.refs == 0:
                    del self._entries[key]
