from pydantic import ValidationError

from .models import MCPRequest, MCPResponse
from .controllers.validation import validate_contract, extract_contract_structure
from .utils.errors import error_response
import logging

logger = logging.getLogger("compact_mcp.router")

TOOLS = {
    "validate_contract": (
        validate_contract,
        "Compile a Compact contract with the installed compiler and return structured diagnostics",
    ),
    "extract_contract_structure": (
        extract_contract_structure,
        "List circuits, witnesses, ledger items, types, structs and enums, plus potential issues",
    ),
}


def list_tools() -> list:
    return [{"name": name, "description": description} for name, (_, description) in TOOLS.items()]


async def route_request(raw_msg: dict) -> dict:
    req_id = raw_msg.get("request_id", "unknown") if isinstance(raw_msg, dict) else "unknown"
    try:
        # Validate request structure
        req = MCPRequest(**raw_msg)
    except (TypeError, ValidationError) as e:
        logger.warning(f"Invalid request: {e}")
        return error_response(str(req_id), "INVALID_REQUEST", str(e))

    logger.info(f"Routing request: {req.request_id} Action: {req.action}")

    try:
        if req.action == "list_tools":
            data = list_tools()
        elif req.action in TOOLS:
            handler, _ = TOOLS[req.action]
            data = await handler(req.payload)
        else:
            # Default fallback for unknown actions
            return error_response(
                req.request_id,
                "UNKNOWN_ACTION",
                f"Unsupported action: {req.action}"
            )
    except Exception as e:
        logger.exception(f"Routing error: {str(e)}")
        return error_response(req.request_id, "INTERNAL_ERROR", str(e))

    return MCPResponse(request_id=req.request_id, type="result", data=data).model_dump()
