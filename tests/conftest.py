from __future__ import annotations

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))


import pytest

from lfortran_lsp.resources import TransientWorkspace


class FakeTimerHandle:
    def __init__(self, due: float, callback) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimer:
    """Manually advanced clock standing in for the event loop's ``call_later``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.pending: list[FakeTimerHandle] = []

    def call_later(self, delay: float, callback) -> FakeTimerHandle:
        handle = FakeTimerHandle(self.now + delay, callback)
        self.pending.append(handle)
        return handle

    def armed(self) -> list[FakeTimerHandle]:
        return [handle for handle in self.pending if not handle.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [handle for handle in self.armed() if handle.due <= target + 1e-9]
            if not due:
                break
            handle = min(due, key=lambda item: item.due)
            self.pending.remove(handle)
            self.now = max(self.now, handle.due)
            handle.callback()
        self.now = target


@pytest.fixture
def fake_timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def workspace():
    transient = TransientWorkspace(install_hooks=False)
    transient.acquire()
    yield transient
    transient.release()


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


FUNCTION_CALL1 = "\n".join(
    [
        "module module_function_call1",
        "    type :: softmax",
        "    contains",
        "      procedure :: eval_1d",
        "    end type softmax",
        "  contains",
        "  ",
        "    pure function eval_1d(self, x) result(res)",
        "      class(softmax), intent(in) :: self",
        "      real, intent(in) :: x(:)",
        "      real :: res(size(x))",
        "    end function eval_1d",
        "  ",
        "    pure function eval_1d_prime(self, x) result(res)",
        "      class(softmax), intent(in) :: self",
        "      real, intent(in) :: x(:)",
        "      real :: res(size(x))",
        "      res = self%eval_1d(x)",
        "    end function eval_1d_prime",
        "end module module_function_call1",
    ]
) + "\n"


@pytest.fixture
def function_call1() -> str:
    return FUNCTION_CALL1
