# -*- coding: utf-8 -*-
"""
RESPOSTAS PADRONIZADAS
============================================================
Sucesso:   {success: true,  data, message?, timestamp}
Paginado:  {success: true,  data: [...], pagination, timestamp}
Erro:      {success: false, error, message?, data?, timestamp}
============================================================
"""

import logging
from typing import Any, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from legalflow.config import IS_DEVELOPMENT
from legalflow.errors import ConflictError, LegalFlowError, ValidationError
from legalflow.utils.datas import now_iso

logger = logging.getLogger(__name__)


def ok(data: Any = None, message: Optional[str] = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    body["timestamp"] = now_iso()
    return body


def paginated(page: dict[str, Any], message: Optional[str] = None) -> dict[str, Any]:
    """Converte o resultado de `db.paginate` no envelope paginado."""
    body: dict[str, Any] = {
        "success": True,
        "data": page["items"],
        "pagination": page["pagination"],
    }
    if message:
        body["message"] = message
    body["timestamp"] = now_iso()
    return body


def error_body(error: str, message: Optional[str] = None, data: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": error}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body["timestamp"] = now_iso()
    return body


# ============================================================
# EXCEPTION HANDLERS (registados no main.py)
# ============================================================

# Mapeamento dos tipos de erro pydantic v2 para os códigos da API
_PYDANTIC_CODES = {
    "missing": "REQUIRED_FIELD",
    "string_too_short": "MIN_LENGTH",
    "too_short": "MIN_LENGTH",
    "string_too_long": "MAX_LENGTH",
    "too_long": "MAX_LENGTH",
    "string_pattern_mismatch": "INVALID_FORMAT",
    "value_error": "INVALID_FORMAT",
    "enum": "INVALID_ENUM",
    "literal_error": "INVALID_ENUM",
}


def _validation_code(error_type: str) -> str:
    if error_type in _PYDANTIC_CODES:
        return _PYDANTIC_CODES[error_type]
    if error_type.endswith("_type") or error_type.endswith("_parsing"):
        return "INVALID_TYPE"
    return "INVALID_FORMAT"


def _validation_response(errors: list[dict]) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=error_body(
            "Dados inválidos",
            "Por favor, corrija os erros de validação",
            {"validationErrors": errors},
        ),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", []) if p not in ("body", "query", "path")]
        errors.append({
            "field": ".".join(loc) or "body",
            "message": err.get("msg", "Valor inválido"),
            "code": _validation_code(err.get("type", "")),
        })
    logger.info(f"[VALIDACAO] {request.method} {request.url.path}: {len(errors)} erro(s)")
    return _validation_response(errors)


async def legalflow_error_handler(request: Request, exc: LegalFlowError) -> JSONResponse:
    if isinstance(exc, ValidationError):
        if exc.errors:
            return _validation_response(exc.errors)
        return JSONResponse(status_code=400, content=error_body(exc.message))

    data = None
    if isinstance(exc, ConflictError) and exc.conflicts:
        data = {"conflicts": exc.conflicts}

    if exc.status_code >= 500:
        logger.error(f"[ERRO] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.detail, data),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"Rota não encontrada: {request.method} {request.url.path}"
    else:
        message = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"[ERRO] Excepção não tratada em {request.method} {request.url.path}")
    body = error_body("Erro interno do servidor")
    if IS_DEVELOPMENT:
        body["message"] = f"{type(exc).__name__}: {exc}"
    return JSONResponse(status_code=500, content=body)
