# -*- coding: utf-8 -*-
"""
CONSULTAS CADASTRAIS - DirectData (CPF) e ViaCEP (CEP)
============================================================
Usadas no cadastro de clientes para preencher WhatsApp, email e
endereço automaticamente.

Robustez:
  - Retry automático (tenacity) em timeouts, 5xx e 429
  - Circuit breaker por provider ("directdata", "viacep")
  - Token DirectData lido de DIRECTDATA_TOKEN (nunca em código)
============================================================
"""

import os
import logging
from typing import Any, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log,
)

from legalflow.config import DIRECTDATA_BASE_URL, VIACEP_BASE_URL, EXTERNAL_TIMEOUT
from legalflow.errors import ExternalServiceError, NotFoundError, ValidationError
from legalflow.external.circuit_breaker import CircuitBreaker, get_circuit_breaker
from legalflow.utils.documentos import (
    document_type,
    format_cep,
    format_cpfcnpj,
    normalize_whatsapp,
    only_digits,
    validate_cpfcnpj,
)

logger = logging.getLogger(__name__)

PROVIDER_DIRECTDATA = "directdata"
PROVIDER_VIACEP = "viacep"


def _is_retryable_http_error(exception: BaseException) -> bool:
    """
    Retry em timeouts, erros de ligação, 429 e 5xx.
    Erros de cliente (400, 401, 403, 404) nunca vão funcionar.
    """
    if isinstance(exception, (httpx.TimeoutException, httpx.ConnectError)):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == 429 or status >= 500
    return False


class CadastroClient:
    """Cliente HTTP das consultas cadastrais."""

    def __init__(
        self,
        http_client: Optional[httpx.Client] = None,
        breaker: Optional[CircuitBreaker] = None,
        directdata_token: Optional[str] = None,
    ):
        self._client = http_client or httpx.Client(timeout=EXTERNAL_TIMEOUT)
        self._breaker = breaker or get_circuit_breaker()
        self._token = directdata_token

    @property
    def directdata_token(self) -> str:
        return self._token or os.environ.get("DIRECTDATA_TOKEN", "")

    @retry(
        retry=retry_if_exception(_is_retryable_http_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _get_json(self, url: str, params: Optional[dict] = None) -> Any:
        response = self._client.get(url, params=params, headers={"Accept": "application/json"})
        response.raise_for_status()
        return response.json()

    def _call(self, provider: str, url: str, params: Optional[dict] = None) -> Any:
        """GET JSON com circuit breaker. Falhas de rede/HTTP → ExternalServiceError."""
        self._breaker.ensure_can_call(provider)
        try:
            data = self._get_json(url, params)
        except httpx.HTTPStatusError as e:
            self._breaker.record_failure(provider, f"HTTP {e.response.status_code}")
            logger.error(f"[CADASTRO] {provider} respondeu HTTP {e.response.status_code}")
            raise ExternalServiceError(provider, f"Erro na consulta (HTTP {e.response.status_code})")
        except (httpx.HTTPError, ValueError) as e:
            self._breaker.record_failure(provider, str(e))
            logger.error(f"[CADASTRO] Falha na chamada a {provider}: {type(e).__name__}: {e}")
            raise ExternalServiceError(provider, "Serviço indisponível")
        self._breaker.record_success(provider)
        return data

    # ============================================================
    # DIRECTDATA - CPF
    # ============================================================

    def consultar_cpf(self, cpf: str) -> dict[str, Any]:
        """
        Consulta dados cadastrais de uma pessoa física.

        Returns:
            {nome, cpf, whatsapp, email, endereco}

        Raises:
            ValidationError: CPF sem 11 dígitos
            ExternalServiceError: token em falta, falha HTTP ou mensagem != "Sucesso"
        """
        clean = only_digits(cpf)
        if len(clean) != 11:
            raise ValidationError("CPF deve ter 11 dígitos", field="cpf")

        token = self.directdata_token
        if not token:
            raise ExternalServiceError(PROVIDER_DIRECTDATA, "DIRECTDATA_TOKEN não configurado")

        data = self._call(
            PROVIDER_DIRECTDATA,
            f"{DIRECTDATA_BASE_URL}/CadastroPessoaFisica",
            params={"CPF": clean, "TOKEN": token},
        )

        mensagem = ((data or {}).get("metaDados") or {}).get("mensagem")
        if mensagem != "Sucesso":
            logger.warning(f"[CADASTRO] DirectData devolveu: {mensagem!r} para CPF {clean[:3]}***")
            raise ExternalServiceError(PROVIDER_DIRECTDATA, mensagem or "Erro na consulta CPF")

        retorno = data.get("retorno") or {}
        return {
            "nome": retorno.get("nome"),
            "cpf": clean,
            "whatsapp": extract_whatsapp(retorno),
            "email": extract_email(retorno),
            "endereco": extract_endereco(retorno),
        }

    # ============================================================
    # VIACEP
    # ============================================================

    def consultar_cep(self, cep: str) -> dict[str, Any]:
        """
        Consulta um CEP no ViaCEP.

        Raises:
            ValidationError: CEP sem 8 dígitos
            NotFoundError: ViaCEP respondeu {"erro": true}
        """
        clean = only_digits(cep)
        if len(clean) != 8:
            raise ValidationError("CEP deve ter 8 dígitos", field="cep")

        data = self._call(PROVIDER_VIACEP, f"{VIACEP_BASE_URL}/{clean}/json/")
        if not data or data.get("erro"):
            raise NotFoundError("CEP não encontrado")

        return {
            "cep": format_cep(data.get("cep") or clean),
            "logradouro": data.get("logradouro") or "",
            "complemento": data.get("complemento") or "",
            "bairro": data.get("bairro") or "",
            "cidade": data.get("localidade") or "",
            "uf": data.get("uf") or "",
        }


# ============================================================
# EXTRACÇÃO DO PAYLOAD DIRECTDATA
# ============================================================

def extract_whatsapp(retorno: dict) -> Optional[str]:
    """Primeiro telefone marcado como WhatsApp; senão o primeiro celular."""
    telefones = retorno.get("telefones") or []
    for phone in telefones:
        if phone.get("whatsApp") and phone.get("telefoneComDDD"):
            return normalize_whatsapp(phone["telefoneComDDD"])
    for phone in telefones:
        tipo = (phone.get("tipoTelefone") or "").lower()
        if "celular" in tipo and phone.get("telefoneComDDD"):
            return normalize_whatsapp(phone["telefoneComDDD"])
    return None


def extract_email(retorno: dict) -> Optional[str]:
    emails = retorno.get("emails") or []
    if emails and emails[0].get("enderecoEmail"):
        return emails[0]["enderecoEmail"].strip().lower()
    return None


def extract_endereco(retorno: dict) -> Optional[dict[str, str]]:
    enderecos = retorno.get("enderecos") or []
    if not enderecos:
        return None
    address = enderecos[0]
    return {
        "logradouro": address.get("logradouro") or "",
        "numero": address.get("numero") or "",
        "complemento": address.get("complemento") or "",
        "bairro": address.get("bairro") or "",
        "cidade": address.get("cidade") or "",
        "uf": address.get("uf") or "",
        "cep": format_cep(address.get("cep") or ""),
    }


def validar_documento(value: str) -> dict[str, Any]:
    """Validação local de CPF/CNPJ: {valid, tipo, formatted}."""
    return {
        "valid": validate_cpfcnpj(value),
        "tipo": document_type(value),
        "formatted": format_cpfcnpj(value),
    }


# Singleton (usa httpx.Client partilhado)
_cadastro_client: Optional[CadastroClient] = None


def get_cadastro_client() -> CadastroClient:
    global _cadastro_client
    if _cadastro_client is None:
        _cadastro_client = CadastroClient()
    return _cadastro_client
