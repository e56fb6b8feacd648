from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Sequence

from lfortran_lsp.exceptions import CompilerNotFoundError
from lfortran_lsp.resources import DEFAULT_SUFFIX, TransientWorkspace
from lfortran_lsp.schema import DEFAULT_COMPILER_NAME, Settings

logger = logging.getLogger(__name__)

ProcessRunner = Callable[..., subprocess.CompletedProcess[str]]


def _is_executable_file(path: str) -> bool:
    candidate = Path(path)
    return candidate.is_file() and os.access(candidate, os.X_OK)


def resolve_compiler_path(
    configured: str, *, which: Callable[[str], str | None] | None = None
) -> str:
    """Map the configured compiler path to something we can launch.

    The bare default name, or a path that is not an executable file, falls
    back to a ``PATH`` search. Raises ``CompilerNotFoundError`` when neither
    works.
    """
    which = which or shutil.which
    configured = configured.strip()
    if configured and configured != DEFAULT_COMPILER_NAME and _is_executable_file(configured):
        return configured
    lookup = configured or DEFAULT_COMPILER_NAME
    resolved = which(lookup)
    if resolved is None and lookup != DEFAULT_COMPILER_NAME:
        resolved = which(DEFAULT_COMPILER_NAME)
    if resolved is None:
        raise CompilerNotFoundError(configured)
    logger.debug("lfortran_path = %s", resolved)
    return resolved


def _select_output(
    completed: subprocess.CompletedProcess[str],
    *,
    default_output: str,
    empty_output_is_success: bool,
) -> str:
    stdout = completed.stdout or ""
    stderr = completed.stderr or ""
    if completed.returncode < 0:
        logger.error(
            "Compilation failed: lfortran terminated by signal %d", -completed.returncode
        )
    if stdout.strip():
        if completed.returncode != 0:
            logger.debug("lfortran exited with status %d", completed.returncode)
        return stdout
    if completed.returncode != 0:
        if stderr.strip():
            return stderr
        logger.error(
            "Failed to get stderr from lfortran (exit status %d)", completed.returncode
        )
        return default_output
    if empty_output_is_success:
        return ""
    logger.error("Failed to get stdout from lfortran")
    return default_output


def run_compiler(
    settings: Settings,
    flags: Sequence[str],
    text: str,
    *,
    workspace: TransientWorkspace,
    default_output: str = "",
    empty_output_is_success: bool = False,
    suffix: str = DEFAULT_SUFFIX,
    runner: ProcessRunner = subprocess.run,
    which: Callable[[str], str | None] | None = None,
) -> str:
    """Run lfortran on ``text`` with ``flags`` and return what it printed.

    Never raises: configuration problems, launch failures and timeouts are
    logged and produce ``default_output``.
    """
    try:
        lfortran_path = resolve_compiler_path(settings.compiler.lfortran_path, which=which)
    except CompilerNotFoundError as exc:
        logger.error("%s", exc)
        return default_output

    if os.access(lfortran_path, os.X_OK):
        logger.debug("[%s] is executable", lfortran_path)
    else:
        logger.error("[%s] is NOT executable", lfortran_path)

    try:
        with workspace.source_file(text, suffix=suffix) as source_path:
            command = [lfortran_path, *flags, str(source_path)]
            logger.debug("Running: %s", " ".join(command))
            completed = runner(
                command,
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=settings.compiler.timeout,
            )
    except subprocess.TimeoutExpired as exc:
        logger.error("lfortran timed out after %s seconds", exc.timeout)
        return default_output
    except (OSError, ValueError):
        logger.exception("Failed to launch lfortran at %s", lfortran_path)
        return default_output
    return _select_output(
        completed,
        default_output=default_output,
        empty_output_is_success=empty_output_is_success,
    )
