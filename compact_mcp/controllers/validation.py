"""
Validation Controller: the two contract tools.

Handles: validate_contract (guard → compiler → diagnostics)
         extract_contract_structure (guard → scanner → issue detector)

Both return a plain JSON-ready dict with camelCase keys. No exception
escapes: every failure becomes a typed result with a problem/solution pair.
"""

import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from compact_mcp import config
from compact_mcp.models import (
    ContractInfo,
    ContractInput,
    ErrorType,
    StructureFailure,
    StructureResult,
    UserAction,
    ValidationFailure,
    ValidationSuccess,
)
from compact_mcp.services.compiler import CompileRun, get_compiler_service
from compact_mcp.services.diagnostics import categorize, common_fixes, parse_diagnostics, parse_warnings
from compact_mcp.services.input_guard import ContractSource, InputGuard, SourceUnit
from compact_mcp.services.issue_detector import get_issue_detector
from compact_mcp.services.scanner import scan
from compact_mcp.utils.errors import ContractToolError

logger = logging.getLogger("compact_mcp.validation")


# ─── Helpers ─────────────────────────────────────────────────────────

def _dump(model, exclude_none: bool = False) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)


def _contract_info(unit: SourceUnit) -> ContractInfo:
    return ContractInfo(
        filename=unit.filename,
        code_length=len(unit.text),
        line_count=unit.text.count("\n") + 1,
    )


def _invalid_input(e: ValidationError) -> ContractToolError:
    fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
    return ContractToolError(
        ErrorType.USER,
        "Invalid input",
        f"Invalid tool arguments: {fields}",
        UserAction(
            problem="The tool arguments do not have the expected shape",
            solution="Pass 'code' or 'filePath' as a string, optionally with 'filename'",
            details=str(e),
        ),
    )


def _unexpected(e: Exception) -> ContractToolError:
    return ContractToolError(
        ErrorType.SYSTEM,
        "Unexpected error",
        f"System error: {e}",
        UserAction(
            problem="An unexpected internal error occurred",
            solution="Retry the request; if it keeps failing, report the error details",
            is_user_fault=False,
            details=str(e),
        ),
    )


def _failure(e: ContractToolError) -> Dict[str, Any]:
    logger.info(f"[Validate] {e}")
    failure = ValidationFailure(
        error_type=e.error_type,
        error=e.error,
        message=e.message,
        user_action=e.user_action,
        **e.extra,
    )
    return _dump(failure, exclude_none=True)


def _compile_result(run: CompileRun, source: ContractSource, local_includes: List[str]) -> Dict[str, Any]:
    unit = source.unit
    if run.ok:
        warnings = parse_warnings(run.stderr)
        if local_includes:
            warnings.append(
                f"Note: Contract has local includes ({', '.join(local_includes)}) "
                f"- ensure these files exist relative to your contract"
            )
        logger.info(f"[Validate] {unit.filename} compiled with {len(warnings)} warning(s)")
        return _dump(ValidationSuccess(
            compiler_version=run.compiler.version,
            compiler_path=run.compiler.path,
            output=run.stdout or "Compilation completed without errors",
            warnings=warnings,
            local_includes=local_includes or None,
            contract_info=_contract_info(unit),
        ))

    error_output = run.stderr or run.stdout or f"Compiler exited with code {run.returncode}"
    errors, suggestions = parse_diagnostics(error_output, unit.text)
    category = categorize(error_output)
    logger.info(f"[Validate] {unit.filename} failed: {category.category} ({len(errors)} error(s))")
    return _dump(ValidationFailure(
        error_type=ErrorType.COMPILATION,
        error=category.title,
        message=category.title,
        error_category=category,
        compiler_installed=True,
        compiler_version=run.compiler.version,
        compiler_path=run.compiler.path,
        errors=errors,
        error_count=len(errors),
        raw_output=error_output[:config.MAX_RAW_OUTPUT_CHARS],
        contract_info=_contract_info(unit),
        user_action=UserAction(problem=category.explanation, solution=category.solution),
        suggestions=suggestions,
        common_fixes=common_fixes(errors),
    ), exclude_none=True)


# ─── validate_contract ───────────────────────────────────────────────

async def validate_contract(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Pre-compilation validation with the real compiler.

    1. InputGuard: resolve input, local includes, pragma / import prechecks
    2. CompilerService: locate, version check, stage, run, clean up
    3. Diagnostics: itemized errors, category, suggestions, common fixes
    """
    try:
        contract = ContractInput.model_validate(payload)
        source = await InputGuard.resolve(contract)
        local_includes = InputGuard.check_includes(source)
        InputGuard.precheck(source.unit)

        run = await get_compiler_service().compile(source)
        return _compile_result(run, source, local_includes)
    except ContractToolError as e:
        return _failure(e)
    except ValidationError as e:
        return _failure(_invalid_input(e))
    except Exception as e:
        logger.exception("Unexpected error during contract validation")
        return _failure(_unexpected(e))


# ─── extract_contract_structure ──────────────────────────────────────

def _structure_failure(e: ContractToolError) -> Dict[str, Any]:
    logger.info(f"[Structure] {e}")
    failure = StructureFailure(
        error_type=e.error_type,
        error=e.error,
        message=e.message,
        details=e.user_action.details or e.user_action.problem,
    )
    return _dump(failure, exclude_none=True)


async def extract_contract_structure(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Declarations, exports, stats and potential issues. Never runs the compiler."""
    try:
        contract = ContractInput.model_validate(payload)
        source = await InputGuard.resolve(contract)

        result = scan(source.unit.text)
        issues = get_issue_detector().detect(result)

        summary = result.summary
        message = f"Contract contains: {summary if summary != 'Empty contract' else 'no definitions found'}"
        if issues:
            message += f" ({len(issues)} potential issue(s) detected)"

        return _dump(StructureResult(
            filename=source.unit.filename,
            language_version=result.language_version,
            imports=result.imports,
            structure=result.structure,
            exports=result.exports,
            stats=result.stats,
            potential_issues=issues,
            summary=summary,
            message=message,
        ))
    except ContractToolError as e:
        return _structure_failure(e)
    except ValidationError as e:
        return _structure_failure(_invalid_input(e))
    except Exception as e:
        logger.exception("Unexpected error during structure extraction")
        return _structure_failure(_unexpected(e))
