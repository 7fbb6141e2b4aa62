from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Optional, Dict, List, Literal
from enum import Enum


class CamelModel(BaseModel):
    """Serialized with camelCase keys (by_alias=True); accepts either spelling."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── MCP Protocol Models ─────────────────────────────────────────────

class MCPRequest(BaseModel):
    request_id: str
    action: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    context: Optional[Dict[str, Any]] = None


class MCPResponse(BaseModel):
    request_id: str
    type: str  # "result" | "error"
    data: Any
    error: Optional[Dict[str, Any]] = None


# ─── Tool Input ──────────────────────────────────────────────────────

class ContractInput(CamelModel):
    code: Optional[str] = None
    file_path: Optional[str] = None
    filename: Optional[str] = None


# ─── Declarations (LexicalScanner output) ────────────────────────────

class Circuit(CamelModel):
    kind: Literal["circuit"] = "circuit"
    name: str
    params: List[str] = Field(default_factory=list)
    return_type: str = "[]"
    is_exported: bool = False
    is_pure: bool = False
    line: int


class Witness(CamelModel):
    kind: Literal["witness"] = "witness"
    name: str
    type: str
    params: List[str] = Field(default_factory=list)
    is_exported: bool = False
    line: int


class LedgerItem(CamelModel):
    kind: Literal["ledger"] = "ledger"
    name: str
    type: str
    is_exported: bool = False
    is_sealed: bool = False
    line: int


class TypeAlias(CamelModel):
    kind: Literal["type"] = "type"
    name: str
    definition: str
    is_exported: bool = False
    line: int


class Struct(CamelModel):
    kind: Literal["struct"] = "struct"
    name: str
    fields: List[str] = Field(default_factory=list)
    is_exported: bool = False
    line: int


class EnumDef(CamelModel):
    kind: Literal["enum"] = "enum"
    name: str
    variants: List[str] = Field(default_factory=list)
    is_exported: bool = False
    line: int


class ContractStructure(CamelModel):
    circuits: List[Circuit] = Field(default_factory=list)
    witnesses: List[Witness] = Field(default_factory=list)
    ledger_items: List[LedgerItem] = Field(default_factory=list)
    types: List[TypeAlias] = Field(default_factory=list)
    structs: List[Struct] = Field(default_factory=list)
    enums: List[EnumDef] = Field(default_factory=list)


class ContractExports(CamelModel):
    circuits: List[str] = Field(default_factory=list)
    witnesses: List[str] = Field(default_factory=list)
    ledger: List[str] = Field(default_factory=list)


class ContractStats(CamelModel):
    line_count: int = 0
    circuit_count: int = 0
    witness_count: int = 0
    ledger_count: int = 0
    type_count: int = 0
    struct_count: int = 0
    enum_count: int = 0
    exported_circuits: int = 0
    exported_witnesses: int = 0
    exported_ledger: int = 0


# ─── IssueDetector Output ────────────────────────────────────────────

class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueKind(str, Enum):
    MODULE_LEVEL_CONST = "module_level_const"
    STDLIB_NAME_COLLISION = "stdlib_name_collision"
    SEALED_EXPORT_CONFLICT = "sealed_export_conflict"
    MISSING_CONSTRUCTOR = "missing_constructor"
    UNSUPPORTED_DIVISION = "unsupported_division"
    INVALID_COUNTER_ACCESS = "invalid_counter_access"
    POTENTIAL_OVERFLOW = "potential_overflow"
    UNDISCLOSED_WITNESS_CONDITIONAL = "undisclosed_witness_conditional"
    UNDISCLOSED_CONSTRUCTOR_PARAM = "undisclosed_constructor_param"
    DEPRECATED_LEDGER_BLOCK = "deprecated_ledger_block"
    INVALID_VOID_TYPE = "invalid_void_type"
    INVALID_PRAGMA_FORMAT = "invalid_pragma_format"
    DEPRECATED_CELL_WRAPPER = "deprecated_cell_wrapper"
    UNEXPORTED_ENUM = "unexported_enum"


class PotentialIssue(CamelModel):
    kind: IssueKind
    severity: IssueSeverity
    message: str
    suggestion: str
    line: Optional[int] = None


# ─── Compiler Diagnostics ────────────────────────────────────────────

class CompilerDiagnostic(CamelModel):
    line: Optional[int] = None
    column: Optional[int] = None
    message: str
    severity: Literal["error", "warning"] = "error"
    source_context: Optional[str] = None


class ErrorCategory(CamelModel):
    category: str  # syntax_error | type_error | reference_error | import_error | structure_error | unknown_error
    title: str
    explanation: str
    solution: str


class CommonFix(CamelModel):
    pattern: str
    fix: str


# ─── Tool Results ────────────────────────────────────────────────────

class ErrorType(str, Enum):
    SECURITY = "security_error"
    USER = "user_error"
    ENVIRONMENT = "environment_error"
    SYSTEM = "system_error"
    TIMEOUT = "timeout_error"
    COMPILATION = "compilation_error"


class UserAction(CamelModel):
    problem: str
    solution: str
    is_user_fault: bool = True
    fix: Optional[str] = None
    example: Optional[Any] = None
    command: Optional[str] = None
    details: Optional[str] = None
    detected_includes: Optional[List[str]] = None
    possible_causes: Optional[List[str]] = None


class ContractInfo(CamelModel):
    filename: str
    code_length: int
    line_count: int


class ValidationSuccess(CamelModel):
    success: Literal[True] = True
    error_type: None = None
    compiler_installed: bool = True
    compiler_version: str
    compiler_path: str
    message: str = "Contract compiled successfully!"
    output: str
    warnings: List[str] = Field(default_factory=list)
    local_includes: Optional[List[str]] = None
    contract_info: ContractInfo
    next_steps: List[str] = Field(default_factory=lambda: [
        "The contract syntax is valid and compiles",
        "Generated files would be in the output directory",
        "You can proceed with deployment or further development",
    ])


class ValidationFailure(CamelModel):
    success: Literal[False] = False
    error_type: ErrorType
    error: str
    message: str
    user_action: UserAction
    errors: Optional[List[CompilerDiagnostic]] = None
    error_count: Optional[int] = None
    error_category: Optional[ErrorCategory] = None
    suggestions: Optional[List[str]] = None
    common_fixes: Optional[List[CommonFix]] = None
    raw_output: Optional[str] = None
    compiler_installed: Optional[bool] = None
    compiler_version: Optional[str] = None
    compiler_path: Optional[str] = None
    installation: Optional[Dict[str, Any]] = None
    system_error: Optional[Dict[str, Any]] = None
    contract_info: Optional[ContractInfo] = None
    detected_issues: Optional[List[str]] = None


class StructureResult(CamelModel):
    success: Literal[True] = True
    filename: str
    language_version: Optional[str] = None
    imports: List[str] = Field(default_factory=list)
    structure: ContractStructure
    exports: ContractExports
    stats: ContractStats
    potential_issues: List[PotentialIssue] = Field(default_factory=list)
    summary: str
    message: str


class StructureFailure(CamelModel):
    success: Literal[False] = False
    error_type: ErrorType
    error: str
    message: str
    details: Optional[str] = None
