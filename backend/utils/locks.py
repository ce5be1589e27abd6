"""Reader/writer lock with writer priority."""

from __future__ import annotations

from contextlib import contextmanager
from threading import Condition, Lock
from typing import Iterator


class ReadWriteLock:
    """Many concurrent readers or one writer.

    New readers wait while a writer is queued, so a burst of queries cannot
    starve an approval waiting for the write side. Not reentrant.
    """

    def __init__(self) -> None:
        self._condition = Condition(Lock())
        self._active_readers = 0
        self._writer_active = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._condition:
            while self._writer_active or self._waiting_writers:
                self._condition.wait()
            self._active_readers += 1

    def release_read(self) -> None:
        with self._condition:
            if self._active_readers <= 0:
                raise RuntimeError("release_read called without a matching acquire")
            self._active_readers -= 1
            if self._active_readers == 0:
                self._condition.notify_all()

    def acquire_write(self) -> None:
        with self._condition:
            self._waiting_writers += 1
            try:
                while self._writer_active or self._active_readers:
                    self._condition.wait()
            finally:
                self._waiting_writers -= 1
            self._writer_active = True

    def release_write(self) -> None:
        with self._condition:
            if not self._writer_active:
                raise RuntimeError("release_write called without a matching acquire")
            self._writer_active = False
            self._condition.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    @property
    def readers(self) -> int:
        with self._condition:
            return self._active_readers

    @property
    def writer_active(self) -> bool:
        with self._condition:
            return self._writer_active
