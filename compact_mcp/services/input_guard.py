import asyncio
import logging
import os
import re
import sys
from dataclasses import dataclass
from pathlib import PurePosixPath, PureWindowsPath
from typing import List, Optional, Union

from compact_mcp import config
from compact_mcp.models import ContractInput, ErrorType, UserAction
from compact_mcp.services import knowledge
from compact_mcp.utils.compact_source import mask_source, strip_comments
from compact_mcp.utils.errors import ContractToolError, os_error_code

logger = logging.getLogger("compact_mcp.input_guard")


# ─── Source model ────────────────────────────────────────────────────

@dataclass(frozen=True)
class SourceUnit:
    text: str
    filename: str
    origin_dir: Optional[str] = None


@dataclass(frozen=True)
class InlineSource:
    unit: SourceUnit


@dataclass(frozen=True)
class FileSource:
    unit: SourceUnit
    path: str


ContractSource = Union[InlineSource, FileSource]


class InputGuard:
    """
    Input boundary for both tool operations.

    Resolves the `code` / `filePath` input into a SourceUnit exactly once and
    rejects anything unsafe or unusable before it reaches the scanner or the
    compiler:
    - path traversal, relative paths, non-.compact files, system directories (security_error)
    - missing / ambiguous / oversized / binary input (user_error)
    - local includes that cannot resolve from inline code (user_error)
    - missing pragma or stdlib import (user_error, validate only)
    """

    UNIX_DENY = ("/etc", "/var", "/usr", "/bin", "/sbin", "/root")
    # Entries ending in '*' are raw prefixes ("C:\Program Files (x86)" included).
    WINDOWS_DENY = ("C:\\Windows", "C:\\Program Files*", "C:\\System32", "C:\\ProgramData")

    CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")
    INCLUDE = re.compile(r'\binclude\s+"([^"]+)"')
    PRAGMA = re.compile(r"\bpragma\s+language_version\b")

    # ─── Paths ───────────────────────────────────────────────────────

    @staticmethod
    def _denied(path: str, windows: bool) -> bool:
        if windows:
            candidate = path.replace("/", "\\").lower()
            for entry in InputGuard.WINDOWS_DENY:
                entry = entry.lower()
                if entry.endswith("*"):
                    if candidate.startswith(entry[:-1]):
                        return True
                elif candidate == entry or candidate.startswith(entry + "\\"):
                    return True
            return False
        return any(path == d or path.startswith(d + "/") for d in InputGuard.UNIX_DENY)

    @staticmethod
    def validate_path(file_path: str, platform: str = sys.platform) -> str:
        """
        Check a user-supplied path and return its normalized form.
        Pure apart from symlink resolution, which only happens when `platform`
        is the host's own. Raises ContractToolError(security_error).
        """
        windows = platform.startswith("win")
        pure = PureWindowsPath(file_path) if windows else PurePosixPath(file_path)

        def reject(problem: str) -> ContractToolError:
            logger.warning(f"[InputGuard] Rejected path {file_path!r}: {problem}")
            return ContractToolError(
                ErrorType.SECURITY,
                "Invalid file path",
                problem,
                UserAction(
                    problem=problem,
                    solution="Provide an absolute path to a .compact file in your project directory",
                    example={"filePath": "/Users/you/projects/myapp/contract.compact"},
                ),
            )

        if not pure.is_absolute():
            raise reject("File path must be absolute (e.g., /Users/you/contract.compact)")
        if ".." in file_path:
            raise reject("Path traversal detected - use absolute paths without ../")
        if not file_path.endswith(config.FILE_EXTENSION):
            raise reject(f"File must have {config.FILE_EXTENSION} extension")

        normalized = str(pure)
        candidates = [normalized]
        if windows == (os.name == "nt"):
            normalized = os.path.realpath(file_path)
            candidates.append(normalized)
        if any(InputGuard._denied(c, windows) for c in candidates):
            raise reject("Cannot access files in system directories")
        return normalized

    # ─── Content ─────────────────────────────────────────────────────

    @staticmethod
    def is_text(content: str) -> bool:
        """False for NUL bytes or more than 1% control characters (binary/garbage guard)."""
        if "\x00" in content:
            return False
        control = len(InputGuard.CONTROL_CHARS.findall(content))
        return control <= len(content) * config.MAX_CONTROL_CHAR_RATIO

    @staticmethod
    def sanitize_filename(filename: Optional[str]) -> str:
        name = re.sub(r"[^a-zA-Z0-9._-]", "_", filename or config.DEFAULT_FILENAME)
        if not name.endswith(config.FILE_EXTENSION):
            name = config.DEFAULT_FILENAME
        return name

    @staticmethod
    def detect_local_includes(code: str) -> List[str]:
        """`include "..."` targets that refer to local files rather than the standard library."""
        includes = []
        for m in InputGuard.INCLUDE.finditer(strip_comments(code)):
            target = m.group(1)
            if target in knowledge.language()["stdlib"]["include_aliases"]:
                continue
            if target.startswith(knowledge.stdlib_module()):
                continue
            if target.endswith(config.FILE_EXTENSION) or target.startswith(("./", "../")):
                includes.append(target)
        return includes

    @staticmethod
    def check_size(text: str) -> None:
        size = len(text.encode("utf-8"))
        if size > config.MAX_CODE_SIZE:
            raise ContractToolError(
                ErrorType.USER,
                "Contract code too large",
                "Contract code exceeds maximum size",
                UserAction(
                    problem=f"Contract is {size / 1024:.1f}KB, maximum is {config.MAX_CODE_SIZE // 1024}KB",
                    solution="Reduce contract size or split into multiple files",
                ),
            )

    # ─── Resolution ──────────────────────────────────────────────────

    @staticmethod
    def _read(path: str) -> str:
        with open(path, encoding="utf-8") as f:
            return f.read()

    @staticmethod
    async def resolve(contract: ContractInput) -> ContractSource:
        """Turn the raw `code` / `filePath` input into exactly one checked source."""
        has_code = bool(contract.code)
        has_path = bool(contract.file_path)

        if has_code and has_path:
            raise ContractToolError(
                ErrorType.USER,
                "Ambiguous input",
                "Provide either 'code' or 'filePath', not both",
                UserAction(
                    problem="Both a code string and a file path were provided",
                    solution="Send the contract source as 'code' OR point to it with 'filePath'",
                ),
            )

        if has_path:
            return await InputGuard._resolve_file(contract.file_path)

        if has_code:
            code = contract.code
            InputGuard.check_size(code)
            if not InputGuard.is_text(code):
                raise ContractToolError(
                    ErrorType.USER,
                    "Invalid code content",
                    "Code contains invalid characters",
                    UserAction(
                        problem="The provided code contains binary or non-printable characters",
                        solution="Provide valid UTF-8 Compact source code",
                    ),
                )
            unit = SourceUnit(text=code, filename=InputGuard.sanitize_filename(contract.filename))
            return InlineSource(unit=unit)

        raise ContractToolError(
            ErrorType.USER,
            "No contract provided",
            "Must provide either 'code' or 'filePath'",
            UserAction(
                problem="Neither code string nor file path was provided",
                solution="Provide the contract source code OR a path to a .compact file",
                example={
                    "withCode": {"code": "pragma language_version >= 0.16; ..."},
                    "withFile": {"filePath": "/path/to/contract.compact"},
                },
            ),
        )

    @staticmethod
    async def _resolve_file(file_path: str) -> FileSource:
        path = InputGuard.validate_path(file_path)

        try:
            text = await asyncio.to_thread(InputGuard._read, path)
        except UnicodeDecodeError:
            text = None
        except OSError as e:
            code = os_error_code(e)
            logger.info(f"[InputGuard] Cannot read {path}: {code}")
            if isinstance(e, FileNotFoundError):
                problem, solution = "File does not exist", "Check that the file path is correct"
            elif isinstance(e, PermissionError):
                problem, solution = "Permission denied", "Check file permissions"
            else:
                problem, solution = "Cannot read file", "Check that the path points to a readable .compact file"
            raise ContractToolError(
                ErrorType.USER,
                "Failed to read file",
                f"Cannot read file: {file_path}",
                UserAction(problem=problem, solution=solution, details=f"{code}: {e.strerror}"),
            )

        if text is None or not InputGuard.is_text(text):
            raise ContractToolError(
                ErrorType.USER,
                "Invalid file content",
                "File appears to be binary or contains invalid characters",
                UserAction(
                    problem="The file is not a valid UTF-8 text file",
                    solution="Ensure you're pointing to a Compact source file (.compact), not a compiled binary",
                ),
            )
        InputGuard.check_size(text)

        unit = SourceUnit(
            text=text,
            filename=os.path.basename(path),
            origin_dir=os.path.dirname(path),
        )
        return FileSource(unit=unit, path=path)

    # ─── Validate-only checks ────────────────────────────────────────

    @staticmethod
    def check_includes(source: ContractSource) -> List[str]:
        """
        Local includes of the source. Fatal for inline code (nothing to resolve
        them against); returned as warnings for file input.
        """
        includes = InputGuard.detect_local_includes(source.unit.text)
        if includes and isinstance(source, InlineSource):
            raise ContractToolError(
                ErrorType.USER,
                "Local includes detected",
                "Contract has local file includes that cannot be resolved",
                UserAction(
                    problem=f"Contract includes local files: {', '.join(includes)}",
                    solution="Use filePath instead of code when your contract has local includes, "
                             "so relative paths can be resolved",
                    detected_includes=includes,
                    example={
                        "instead": '{ code: "include \\"utils.compact\\"; ..." }',
                        "use": '{ filePath: "/path/to/your/contract.compact" }',
                    },
                ),
            )
        return includes

    @staticmethod
    def precheck(unit: SourceUnit) -> None:
        """Cheap checks that would otherwise cost a compiler run."""
        text = unit.text
        if not text.strip():
            raise ContractToolError(
                ErrorType.USER,
                "Empty contract code provided",
                "No contract code to validate",
                UserAction(
                    problem="The contract code is empty or contains only whitespace",
                    solution="Provide valid Compact contract source code",
                    example=knowledge.example("minimal_contract"),
                ),
            )

        uncommented = strip_comments(text)
        if not InputGuard.PRAGMA.search(uncommented):
            raise ContractToolError(
                ErrorType.USER,
                "Missing pragma directive",
                "Contract is missing required pragma directive",
                UserAction(
                    problem="All Compact contracts must start with a pragma language_version directive",
                    solution="Add pragma directive at the beginning of your contract",
                    fix=f"Add: pragma language_version >= {config.LANGUAGE_VERSION_MIN};",
                    example=knowledge.example("pragma_header"),
                ),
                detected_issues=["Missing pragma language_version directive"],
            )

        module = knowledge.stdlib_module()
        if knowledge.stdlib_type_pattern().search(mask_source(text)) and \
                not knowledge.stdlib_import_pattern().search(uncommented):
            types = ", ".join(knowledge.stdlib_type_names())
            raise ContractToolError(
                ErrorType.USER,
                "Missing standard library import",
                "Contract uses standard library types without importing them",
                UserAction(
                    problem=f"You're using types like {types} without importing the standard library",
                    solution="Add the import statement after your pragma directive",
                    fix=f"Add: import {module};",
                    example=knowledge.example("import_header"),
                ),
                detected_issues=[
                    f"Uses standard library types ({types})",
                    f"Missing: import {module};",
                ],
            )


def get_input_guard() -> InputGuard:
    return InputGuard()
