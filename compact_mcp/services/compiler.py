import asyncio
import logging
import os
import re
import shutil
import subprocess
import sys
import tempfile
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import IO, Callable, Dict, Iterable, List, Optional

from compact_mcp import config
from compact_mcp.models import ErrorType, UserAction
from compact_mcp.services.input_guard import ContractSource, FileSource
from compact_mcp.utils.errors import ContractToolError, os_error_code

logger = logging.getLogger("compact_mcp.compiler")


class CompileStage(str, Enum):
    LOCATING = "locating"
    VERSION_CHECKING = "version_checking"
    STAGING = "staging"
    RUNNING = "running"
    CLEANUP = "cleanup"


@dataclass(frozen=True)
class CompilerInfo:
    path: str
    version: str


@dataclass(frozen=True)
class CompileRun:
    compiler: CompilerInfo
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


_READ_CHUNK_CHARS = 64 * 1024
_READER_JOIN_SECONDS = 5


class _BoundedReader(threading.Thread):
    """
    Drains one compiler pipe in the background, keeping at most
    config.MAX_COMPILER_OUTPUT_CHARS characters. Past the cap it calls
    `on_overflow` (kills the compiler) and stops reading.
    """

    def __init__(self, stream: IO[str], on_overflow: Callable[[], None]):
        super().__init__(daemon=True)
        self.stream = stream
        self.on_overflow = on_overflow
        self.limit = config.MAX_COMPILER_OUTPUT_CHARS
        self.overflowed = False
        self._chunks: List[str] = []
        self._size = 0

    def run(self) -> None:
        try:
            while True:
                chunk = self.stream.read(_READ_CHUNK_CHARS)
                if not chunk:
                    break
                if self._size + len(chunk) > self.limit:
                    self._chunks.append(chunk[:self.limit - self._size])
                    self._size = self.limit
                    self.overflowed = True
                    self.on_overflow()
                    break
                self._chunks.append(chunk)
                self._size += len(chunk)
        except (OSError, ValueError) as e:
            # The pipe was closed under us (compiler killed).
            logger.debug(f"[Compiler] Output reader stopped: {e}")
        finally:
            self.stream.close()

    @property
    def text(self) -> str:
        return "".join(self._chunks)


def _is_windows_system_path(candidate: str) -> bool:
    # C:\Windows\System32\compact.exe is the NTFS compression tool, not the compiler.
    lowered = candidate.replace("/", "\\").lower()
    return "\\system32\\" in lowered or re.match(r"^[a-z]:\\windows\\", lowered) is not None


def _installation() -> Dict[str, object]:
    return {
        "message": "The Compact compiler is required for contract validation. Install it with:",
        "command": config.INSTALL_COMMAND,
        "postInstall": [
            "After installation, run: compact update",
            "Then verify with: compact compile --version",
        ],
        "docs": config.INSTALL_DOCS,
    }


def _system_error(error: str, message: str, exc: OSError) -> ContractToolError:
    code = os_error_code(exc)
    if code == "ENOSPC":
        problem, solution = "Disk is full", "Free up disk space and retry"
    elif code in ("EACCES", "EPERM"):
        problem, solution = "Permission denied", "Check file system permissions"
    else:
        problem, solution = "File system error", "Check system resources"
    return ContractToolError(
        ErrorType.SYSTEM,
        error,
        message,
        UserAction(problem=problem, solution=solution, is_user_fault=False, details=str(exc)),
        system_error={"code": code, "details": str(exc), "problem": problem, "solution": solution, "isUserFault": False},
    )


class CompilerService:
    """
    Runs the external Compact compiler.

    locating → version_checking → staging → running → cleanup. Every subprocess
    call uses an argument vector (no shell) and a timeout; compiler output is
    read through bounded buffers. The staging directory is removed on every
    exit path.
    """

    # ─── Locating ────────────────────────────────────────────────────

    @staticmethod
    def candidates(binary: str = config.COMPILER_BINARY, platform: str = sys.platform) -> List[str]:
        """Every executable named `binary` on PATH, in PATH order."""
        windows = platform.startswith("win")
        exts = [""]
        if windows:
            pathext = os.environ.get("PATHEXT", ".EXE;.CMD;.BAT")
            exts = [e.lower() for e in pathext.split(";") if e]
            if os.path.splitext(binary)[1]:
                exts.insert(0, "")

        found: List[str] = []
        for directory in os.environ.get("PATH", "").split(os.pathsep):
            if not directory:
                continue
            for ext in exts:
                path = os.path.join(directory, binary + ext)
                if path not in found and os.path.isfile(path) and os.access(path, os.X_OK):
                    found.append(path)
        return found

    @staticmethod
    def probe(path: str) -> Optional[str]:
        """`<path> compile --version` output, or None if the candidate isn't the compiler."""
        try:
            result = subprocess.run(
                [path, "compile", "--version"],
                capture_output=True,
                text=True,
                timeout=config.VERSION_PROBE_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"[Compiler] Probe failed for {path}: {e}")
            return None
        if result.returncode != 0:
            return None
        return (result.stdout or result.stderr).strip() or None

    @staticmethod
    def select_compiler(candidates: Iterable[str], windows: bool) -> Optional[CompilerInfo]:
        """First candidate that answers the version probe; Windows system copies are skipped."""
        for candidate in candidates:
            if windows and _is_windows_system_path(candidate):
                logger.info(f"[Compiler] Skipping system binary {candidate}")
                continue
            version = CompilerService.probe(candidate)
            if version is not None:
                return CompilerInfo(path=candidate, version=version)
        return None

    def locate(self, platform: str = sys.platform) -> CompilerInfo:
        logger.info(f"[Compiler] {CompileStage.LOCATING.value}")
        if config.COMPILER_PATH:
            candidates = [config.COMPILER_PATH]
        else:
            candidates = self.candidates(platform=platform)
        info = self.select_compiler(candidates, windows=platform.startswith("win"))
        if info is None:
            logger.error(f"[Compiler] No working '{config.COMPILER_BINARY}' among {len(candidates)} candidate(s)")
            raise ContractToolError(
                ErrorType.ENVIRONMENT,
                "Compact compiler not found",
                "Compact compiler is not installed",
                UserAction(
                    problem="The Compact compiler is not installed on this system",
                    solution="Install the compiler using the command above, then retry validation",
                    is_user_fault=False,
                    command=config.INSTALL_COMMAND,
                ),
                compiler_installed=False,
                installation=_installation(),
            )
        return info

    @staticmethod
    def check_version(info: CompilerInfo) -> None:
        logger.info(f"[Compiler] {CompileStage.VERSION_CHECKING.value}: {info.version}")
        m = re.search(r"(\d+)\.(\d+)", info.version)
        if not m:
            return
        if (int(m.group(1)), int(m.group(2))) < config.min_compiler_version():
            raise ContractToolError(
                ErrorType.ENVIRONMENT,
                "Compiler version too old",
                f"Compact compiler {info.version} is outdated",
                UserAction(
                    problem=f"Your compiler version ({info.version}) may not support current syntax",
                    solution="Update to the latest compiler version",
                    command="compact update",
                    is_user_fault=False,
                ),
                compiler_installed=True,
                compiler_version=info.version,
                compiler_path=info.path,
            )

    # ─── Staging / running ───────────────────────────────────────────

    @staticmethod
    def _stage(temp_dir: str, source: ContractSource) -> str:
        output_dir = os.path.join(temp_dir, "output")
        try:
            os.makedirs(output_dir)
        except OSError as e:
            raise _system_error("Failed to create temporary directory", "System error: Cannot create temp files", e)
        staged = os.path.join(temp_dir, source.unit.filename)
        try:
            with open(staged, "w", encoding="utf-8") as f:
                f.write(source.unit.text)
        except OSError as e:
            raise _system_error("Failed to write contract file", "System error: Cannot write temp file", e)
        return staged

    def run(self, source: ContractSource, platform: str = sys.platform) -> CompileRun:
        """Blocking: locate, check, stage and compile. Raises ContractToolError."""
        info = self.locate(platform)
        self.check_version(info)

        logger.info(f"[Compiler] {CompileStage.STAGING.value}")
        try:
            temp_dir = tempfile.mkdtemp(prefix=f"compact-validate-{int(time.time() * 1000)}-")
        except OSError as e:
            raise _system_error("Failed to create temporary directory", "System error: Cannot create temp files", e)

        try:
            staged = self._stage(temp_dir, source)
            output_dir = os.path.join(temp_dir, "output")
            # File input compiles the original so its relative includes resolve.
            if isinstance(source, FileSource):
                target, cwd = source.path, source.unit.origin_dir
            else:
                target, cwd = staged, temp_dir

            logger.info(f"[Compiler] {CompileStage.RUNNING.value}: {info.path} compile {target}")
            try:
                proc = subprocess.Popen(
                    [info.path, "compile", target, output_dir],
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    cwd=cwd,
                )
            except OSError as e:
                raise _system_error("Failed to run compiler", f"System error: Cannot run {info.path}", e)

            stdout = _BoundedReader(proc.stdout, proc.kill)
            stderr = _BoundedReader(proc.stderr, proc.kill)
            stdout.start()
            stderr.start()
            try:
                returncode = proc.wait(timeout=config.COMPILE_TIMEOUT_SECONDS)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
                logger.warning(f"[Compiler] Timed out after {config.COMPILE_TIMEOUT_SECONDS}s")
                raise ContractToolError(
                    ErrorType.TIMEOUT,
                    "Compilation timed out",
                    f"Compilation timed out after {config.COMPILE_TIMEOUT_SECONDS} seconds",
                    UserAction(
                        problem="The contract took too long to compile",
                        solution="Simplify the contract or check for infinite loops in circuit logic",
                        possible_causes=[
                            "Very complex contract with many circuits",
                            "Recursive or deeply nested structures",
                            "Large number of constraints",
                        ],
                    ),
                    compiler_installed=True,
                    compiler_version=info.version,
                )
            finally:
                stdout.join(_READER_JOIN_SECONDS)
                stderr.join(_READER_JOIN_SECONDS)

            if stdout.overflowed or stderr.overflowed:
                limit = config.MAX_COMPILER_OUTPUT_CHARS
                logger.warning(f"[Compiler] Output exceeded {limit} characters, compiler killed")
                raise ContractToolError(
                    ErrorType.SYSTEM,
                    "Compiler output too large",
                    f"Compiler output exceeded {limit} characters",
                    UserAction(
                        problem="The compiler produced more output than the service will buffer",
                        solution="Compile the contract locally to inspect the full output, "
                                 "or fix the first reported errors and retry",
                        is_user_fault=False,
                    ),
                    compiler_installed=True,
                    compiler_version=info.version,
                    compiler_path=info.path,
                )

            return CompileRun(
                compiler=info,
                returncode=returncode,
                stdout=stdout.text,
                stderr=stderr.text,
            )
        finally:
            logger.info(f"[Compiler] {CompileStage.CLEANUP.value}: {temp_dir}")
            try:
                shutil.rmtree(temp_dir)
            except OSError as e:
                logger.warning(f"[Compiler] Failed to remove {temp_dir}: {e}")

    async def compile(self, source: ContractSource) -> CompileRun:
        return await asyncio.to_thread(self.run, source)


def get_compiler_service() -> CompilerService:
    return CompilerService()
