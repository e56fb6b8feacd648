from __future__ import annotations

import atexit
import logging
import os
import shutil
import signal
import sys
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType, TracebackType
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "lfortran-lsp-"
DEFAULT_SUFFIX = ".f90"

SignalHandler = Callable[[int, FrameType | None], object] | int | None
ExceptHook = Callable[[type[BaseException], BaseException, TracebackType | None], object]


class TransientWorkspace:
    """Process-scoped directory holding the source copies handed to lfortran.

    ``acquire`` creates the directory and hooks normal exit, SIGINT and
    uncaught exceptions; ``release`` removes it and unhooks all three. Release
    runs at most once no matter how many exit paths fire.
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX, *, install_hooks: bool = True) -> None:
        self._prefix = prefix
        self._install_hooks = install_hooks
        self._root: Path | None = None
        self._lock = threading.RLock()
        self._previous_sigint: SignalHandler = None
        self._sigint_installed = False
        self._previous_excepthook: ExceptHook | None = None

    @property
    def root(self) -> Path | None:
        return self._root

    @property
    def acquired(self) -> bool:
        return self._root is not None

    def acquire(self) -> Path:
        with self._lock:
            if self._root is not None:
                return self._root
            self._root = Path(tempfile.mkdtemp(prefix=self._prefix))
            logger.debug("Created transient workspace: %s", self._root)
            if self._install_hooks:
                self._register_hooks()
            return self._root

    def release(self) -> bool:
        """Remove the directory; returns False when there was nothing to do."""
        with self._lock:
            root = self._root
            if root is None:
                return False
            self._root = None
            if self._install_hooks:
                self._unregister_hooks()
        logger.debug("Deleting transient workspace: %s", root)
        try:
            shutil.rmtree(root)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("Failed to delete transient workspace: %s", root)
        return True

    @contextmanager
    def source_file(self, text: str, *, suffix: str = DEFAULT_SUFFIX) -> Iterator[Path]:
        root = self.acquire()
        fd, name = tempfile.mkstemp(prefix="document-", suffix=suffix, dir=root)
        path = Path(name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(text)
            yield path
        finally:
            path.unlink(missing_ok=True)

    def _register_hooks(self) -> None:
        atexit.register(self.release)
        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._on_uncaught_exception
        if threading.current_thread() is threading.main_thread():
            self._previous_sigint = signal.getsignal(signal.SIGINT)
            signal.signal(signal.SIGINT, self._on_sigint)
            self._sigint_installed = True

    def _unregister_hooks(self) -> None:
        atexit.unregister(self.release)
        if sys.excepthook == self._on_uncaught_exception and self._previous_excepthook:
            sys.excepthook = self._previous_excepthook
        self._previous_excepthook = None
        if self._sigint_installed and threading.current_thread() is threading.main_thread():
            if signal.getsignal(signal.SIGINT) == self._on_sigint:
                previous = self._previous_sigint
                signal.signal(
                    signal.SIGINT,
                    previous if previous is not None else signal.default_int_handler,
                )
            self._sigint_installed = False

    def _on_sigint(self, signum: int, frame: FrameType | None) -> None:
        previous = self._previous_sigint
        self.release()
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_DFL:
            raise KeyboardInterrupt

    def _on_uncaught_exception(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        traceback: TracebackType | None,
    ) -> None:
        previous = self._previous_excepthook or sys.__excepthook__
        self.release()
        previous(exc_type, exc, traceback)
