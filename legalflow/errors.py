# -*- coding: utf-8 -*-
"""
EXCEPÇÕES DE DOMÍNIO
============================================================
Hierarquia única de erros. Cada classe traz o status HTTP que o
main.py usa para montar a resposta de erro.
============================================================
"""

from typing import Optional


class LegalFlowError(Exception):
    """Erro base da aplicação."""
    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class NotFoundError(LegalFlowError):
    """Registo inexistente."""
    status_code = 404


class ConflictError(LegalFlowError):
    """Registo duplicado ou operação em conflito com o estado actual."""
    status_code = 409

    def __init__(self, message: str, detail: Optional[str] = None, conflicts: Optional[list] = None):
        super().__init__(message, detail)
        self.conflicts = conflicts or []


class ValidationError(LegalFlowError):
    """Dados inválidos. `errors` segue o formato {field, message, code}."""
    status_code = 400

    def __init__(self, message: str, errors: Optional[list[dict]] = None, field: Optional[str] = None,
                 code: str = "INVALID_FORMAT"):
        super().__init__(message)
        if errors is None and field:
            errors = [{"field": field, "message": message, "code": code}]
        self.errors = errors or []


class TransitionError(LegalFlowError):
    """Transição de estado não permitida."""
    status_code = 422

    def __init__(self, current: str, target: str, entity: str = "registo"):
        self.current = current
        self.target = target
        super().__init__(f"Transição inválida de {entity}: {current} → {target}")


class ExternalServiceError(LegalFlowError):
    """Falha num serviço externo (DirectData, ViaCEP, Stripe)."""
    status_code = 502

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"[{provider}] {message}")
