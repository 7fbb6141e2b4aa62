import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from compact_mcp.controllers.validation import extract_contract_structure, validate_contract

linux_only = pytest.mark.skipif(not sys.platform.startswith("linux"), reason="tmp_path outside system directories")

CONTRACT = """pragma language_version >= 0.16;

import CompactStandardLibrary;

export ledger counter: Counter;

export circuit increment(): [] {
  counter.increment(1);
}
"""


# ─── extract_contract_structure ──────────────────────────────────────

@pytest.mark.asyncio
async def test_extract_minimal_contract():
    code = "pragma language_version >= 0.16;\nexport ledger counter: Counter;\nexport circuit increment(): [] {}"
    result = await extract_contract_structure({"code": code})

    assert result["success"] is True
    assert result["filename"] == "contract.compact"
    assert result["languageVersion"] == "0.16"

    structure = result["structure"]
    assert len(structure["circuits"]) == 1
    assert structure["circuits"][0]["isExported"] is True
    assert len(structure["ledgerItems"]) == 1
    assert structure["ledgerItems"][0]["isExported"] is True
    assert structure["witnesses"] == []

    assert "circuit" in result["summary"]
    assert "ledger item" in result["summary"]
    assert result["message"] == f"Contract contains: {result['summary']}"
    assert result["exports"] == {"circuits": ["increment"], "witnesses": [], "ledger": ["counter"]}
    assert result["stats"]["circuitCount"] == 1
    assert result["potentialIssues"] == []


@pytest.mark.asyncio
async def test_extract_empty_contract():
    result = await extract_contract_structure({"code": "pragma language_version >= 0.16;\n"})

    assert result["success"] is True
    assert result["summary"] == "Empty contract"
    assert result["message"] == "Contract contains: no definitions found"
    assert all(items == [] for items in result["structure"].values())


@pytest.mark.asyncio
async def test_extract_reports_issue_count():
    code = "pragma language_version >= 0.16;\nconst LIMIT: Field = 10;\n"
    result = await extract_contract_structure({"code": code})

    assert result["success"] is True
    assert result["message"].endswith("(1 potential issue(s) detected)")
    (issue,) = result["potentialIssues"]
    assert issue["kind"] == "module_level_const"
    assert issue["severity"] == "error"
    assert issue["line"] == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("payload,error", [
    ({}, "No contract provided"),
    ({"code": ""}, "No contract provided"),
    ({"code": "pragma\x00\x01\x02"}, "Invalid code content"),
    ({"code": 42}, "Invalid input"),
])
async def test_extract_user_errors(payload, error):
    result = await extract_contract_structure(payload)

    assert result["success"] is False
    assert result["errorType"] == "user_error"
    assert result["error"] == error
    assert result["details"]


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["contracts/token.compact", "/home/user/../etc/token.compact"])
async def test_extract_rejects_unsafe_paths(path):
    result = await extract_contract_structure({"filePath": path})

    assert result["success"] is False
    assert result["errorType"] == "security_error"
    assert result["error"] == "Invalid file path"


@linux_only
@pytest.mark.asyncio
async def test_extract_from_file(tmp_path):
    path = tmp_path / "counter.compact"
    path.write_text(CONTRACT, encoding="utf-8")

    result = await extract_contract_structure({"filePath": str(path)})
    assert result["success"] is True
    assert result["filename"] == "counter.compact"
    assert result["imports"] == ["CompactStandardLibrary"]


# ─── validate_contract ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_validate_success(fake_compiler):
    fake_compiler.stderr = "warning: unused variable x\n"
    result = await validate_contract({"code": CONTRACT, "filename": "counter.compact"})

    assert result["success"] is True
    assert result["errorType"] is None
    assert result["compilerInstalled"] is True
    assert result["compilerVersion"] == "compact 0.26.0"
    assert result["output"] == "Compilation completed without errors"
    assert result["warnings"] == ["unused variable x"]
    assert result["contractInfo"] == {
        "filename": "counter.compact",
        "codeLength": len(CONTRACT),
        "lineCount": CONTRACT.count("\n") + 1,
    }
    assert result["nextSteps"]


@pytest.mark.asyncio
async def test_validate_removes_temp_dir(fake_compiler):
    await validate_contract({"code": CONTRACT})
    fake_compiler.returncode = 1
    fake_compiler.stderr = "error: boom"
    await validate_contract({"code": CONTRACT})

    assert len(fake_compiler.compile_calls) == 2
    for call in fake_compiler.compile_calls:
        assert not os.path.exists(call["kwargs"]["cwd"])


@pytest.mark.asyncio
async def test_validate_compilation_error(fake_compiler):
    fake_compiler.returncode = 1
    fake_compiler.stderr = (
        "Exception: /tmp/compact-validate-1-x/contract.compact line 8 char 3:\n"
        '  parse error: found "}" looking for an expression\n'
    )
    result = await validate_contract({"code": CONTRACT})

    assert result["success"] is False
    assert result["errorType"] == "compilation_error"
    assert result["errorCategory"]["category"] == "syntax_error"
    assert result["message"] == "Syntax Error"
    assert result["errorCount"] == 1

    (error,) = result["errors"]
    assert error["line"] == 8
    assert error["column"] == 3
    assert "7: export circuit increment(): [] {" in error["sourceContext"]
    assert result["rawOutput"] == fake_compiler.stderr
    assert result["userAction"]["isUserFault"] is True
    assert "suggestions" in result
    assert "commonFixes" in result


@pytest.mark.asyncio
async def test_validate_missing_compiler(no_compiler):
    result = await validate_contract({"code": CONTRACT})

    assert result["success"] is False
    assert result["errorType"] == "environment_error"
    assert result["compilerInstalled"] is False
    assert "command" in result["installation"]
    assert result["userAction"]["isUserFault"] is False


@pytest.mark.asyncio
async def test_validate_outdated_compiler(fake_compiler):
    fake_compiler.version = "compact 0.14.0"
    result = await validate_contract({"code": CONTRACT})

    assert result["errorType"] == "environment_error"
    assert result["error"] == "Compiler version too old"
    assert result["compilerVersion"] == "compact 0.14.0"


@pytest.mark.asyncio
async def test_validate_prechecks_skip_compiler(fake_compiler):
    no_pragma = await validate_contract({"code": "export ledger counter: Counter;"})
    assert no_pragma["errorType"] == "user_error"
    assert no_pragma["error"] == "Missing pragma directive"
    assert no_pragma["detectedIssues"]

    no_import = await validate_contract({"code": "pragma language_version >= 0.16;\nexport ledger c: Counter;"})
    assert no_import["error"] == "Missing standard library import"

    includes = await validate_contract({"code": CONTRACT + 'include "utils.compact";\n'})
    assert includes["error"] == "Local includes detected"
    assert includes["userAction"]["detectedIncludes"] == ["utils.compact"]

    assert fake_compiler.compile_calls == []


@pytest.mark.asyncio
async def test_validate_rejects_traversal(fake_compiler):
    result = await validate_contract({"filePath": "/home/user/../../etc/passwd.compact"})
    assert result["errorType"] == "security_error"
    assert fake_compiler.compile_calls == []


@linux_only
@pytest.mark.asyncio
async def test_validate_file_with_local_includes(fake_compiler, tmp_path):
    path = tmp_path / "main.compact"
    path.write_text(CONTRACT + 'include "utils.compact";\n', encoding="utf-8")

    result = await validate_contract({"filePath": str(path)})

    assert result["success"] is True
    assert result["localIncludes"] == ["utils.compact"]
    assert any("utils.compact" in w for w in result["warnings"])
    (call,) = fake_compiler.compile_calls
    assert call["args"][2] == str(path)
    assert call["kwargs"]["cwd"] == str(tmp_path)


@pytest.mark.asyncio
async def test_validate_unexpected_error_is_contained():
    service = MagicMock()
    service.compile = AsyncMock(side_effect=RuntimeError("kaboom"))

    with patch("compact_mcp.controllers.validation.get_compiler_service", return_value=service):
        result = await validate_contract({"code": CONTRACT})

    assert result["success"] is False
    assert result["errorType"] == "system_error"
    assert "kaboom" in result["message"]
    assert result["userAction"]["isUserFault"] is False
