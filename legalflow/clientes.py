# -*- coding: utf-8 -*-
"""
CLIENTES - Cadastro de clientes (pessoa física / jurídica)
============================================================
Chave: cpfcnpj (apenas dígitos). Tipo derivado do tamanho:
11 dígitos → pf (CPF), 14 dígitos → pj (CNPJ).

Enriquecimento opcional no cadastro:
  - CPF → DirectData (WhatsApp, email, endereço)
  - CEP sem logradouro → ViaCEP
Falhas no enriquecimento nunca impedem o cadastro.
============================================================
"""

import logging
from typing import Any, Optional

from supabase import Client

from legalflow.db import BaseManager, first_row, paginate
from legalflow.errors import ConflictError, LegalFlowError, NotFoundError, ValidationError
from legalflow.external.cadastro import CadastroClient, get_cadastro_client
from legalflow.financeiro import OPEN_PLANO_STATUSES
from legalflow.utils.datas import now_iso
from legalflow.utils.documentos import (
    document_type,
    normalize_whatsapp,
    only_digits,
    validate_cep,
    validate_cpfcnpj,
    validate_email,
    validate_whatsapp,
)
from legalflow.utils.sanitize import sanitize_search_term

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"nome", "whatsapp", "email", "crm_id", "endereco", "observacoes"}
ENDERECO_FIELDS = ("cep", "logradouro", "numero", "complemento", "bairro", "cidade", "uf")


def _clean_endereco(endereco: Optional[dict]) -> Optional[dict]:
    if not endereco:
        return None
    return {k: (str(endereco.get(k) or "").strip()) for k in ENDERECO_FIELDS}


def validate_cliente_fields(data: dict[str, Any], partial: bool = False) -> list[dict]:
    """Erros de domínio no formato {field, message, code}."""
    errors = []
    if not partial or "nome" in data:
        nome = (data.get("nome") or "").strip()
        if not nome:
            errors.append({"field": "nome", "message": "Nome é obrigatório", "code": "REQUIRED_FIELD"})
        elif len(nome) < 2:
            errors.append({"field": "nome", "message": "Nome deve ter pelo menos 2 caracteres",
                           "code": "MIN_LENGTH"})
        elif len(nome) > 255:
            errors.append({"field": "nome", "message": "Nome deve ter no máximo 255 caracteres",
                           "code": "MAX_LENGTH"})
    if data.get("whatsapp") and not validate_whatsapp(data["whatsapp"]):
        errors.append({"field": "whatsapp", "message": "WhatsApp inválido", "code": "INVALID_FORMAT"})
    if data.get("email") and not validate_email(data["email"]):
        errors.append({"field": "email", "message": "Email inválido", "code": "INVALID_FORMAT"})
    endereco = data.get("endereco") or {}
    if endereco.get("cep") and not validate_cep(endereco["cep"]):
        errors.append({"field": "endereco.cep", "message": "CEP inválido", "code": "INVALID_FORMAT"})
    return errors


class ClienteManager(BaseManager):
    """CRUD de clientes e dados relacionados."""

    def __init__(self, supabase_client: Client, cadastro: Optional[CadastroClient] = None):
        super().__init__(supabase_client)
        self._cadastro = cadastro

    @property
    def cadastro(self) -> CadastroClient:
        if self._cadastro is None:
            self._cadastro = get_cadastro_client()
        return self._cadastro

    @staticmethod
    def normalize_key(cpfcnpj: str) -> str:
        digits = only_digits(cpfcnpj)
        if not validate_cpfcnpj(digits):
            raise ValidationError("CPF/CNPJ inválido", field="cpfcnpj")
        return digits

    # ============================================================
    # LEITURA
    # ============================================================

    def list_clientes(
        self,
        page: int = 1,
        limit: int = 10,
        query: Optional[str] = None,
        has_whatsapp: Optional[bool] = None,
        created_after: Optional[str] = None,
        created_before: Optional[str] = None,
    ) -> dict[str, Any]:
        q = self.sb.table("clientes").select("*", count="exact")

        term = sanitize_search_term(query)
        if term:
            q = q.or_(f"nome.ilike.%{term}%,cpfcnpj.ilike.%{term}%,whatsapp.ilike.%{term}%")
        if has_whatsapp is True:
            q = q.neq("whatsapp", "")
        elif has_whatsapp is False:
            q = q.or_("whatsapp.is.null,whatsapp.eq.")
        if created_after:
            q = q.gte("created_at", created_after)
        if created_before:
            q = q.lte("created_at", created_before)

        return paginate(q.order("created_at", desc=True), page, limit)

    def find(self, cpfcnpj: str) -> Optional[dict[str, Any]]:
        result = self.sb.table("clientes").select("*").eq("cpfcnpj", only_digits(cpfcnpj)).limit(1).execute()
        return first_row(result)

    def get(self, cpfcnpj: str) -> dict[str, Any]:
        key = self.normalize_key(cpfcnpj)
        cliente = self.find(key)
        if not cliente:
            raise NotFoundError("Cliente não encontrado")
        return cliente

    # ============================================================
    # ESCRITA
    # ============================================================

    def create(self, data: dict[str, Any], enrich: bool = False) -> dict[str, Any]:
        key = self.normalize_key(data.get("cpfcnpj", ""))

        errors = validate_cliente_fields(data)
        if errors:
            raise ValidationError("Dados do cliente inválidos", errors=errors)

        if self.find(key):
            raise ConflictError("Cliente já existe")

        row = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        row["cpfcnpj"] = key
        row["tipo"] = document_type(key)
        row["nome"] = data["nome"].strip()
        row["whatsapp"] = normalize_whatsapp(data.get("whatsapp")) or None
        row["email"] = (data.get("email") or "").strip().lower() or None
        row["endereco"] = _clean_endereco(data.get("endereco"))

        if enrich:
            row = self._enrich(row)

        row["created_at"] = now_iso()
        row["updated_at"] = row["created_at"]
        created = first_row(self.sb.table("clientes").insert(row).execute()) or row
        logger.info(f"[CLIENTES] Cliente criado: {key[:3]}*** ({row['tipo']})")
        return created

    def _enrich(self, row: dict[str, Any]) -> dict[str, Any]:
        """Completa campos em falta com DirectData/ViaCEP (best-effort)."""
        if row["tipo"] == "pf" and not (row.get("whatsapp") and row.get("email") and row.get("endereco")):
            try:
                dados = self.cadastro.consultar_cpf(row["cpfcnpj"])
                row["whatsapp"] = row.get("whatsapp") or dados.get("whatsapp")
                row["email"] = row.get("email") or dados.get("email")
                row["endereco"] = row.get("endereco") or dados.get("endereco")
                logger.info(f"[CLIENTES] Dados DirectData aplicados a {row['cpfcnpj'][:3]}***")
            except LegalFlowError as e:
                logger.warning(f"[CLIENTES] Enriquecimento DirectData ignorado: {e}")

        endereco = row.get("endereco") or {}
        if endereco.get("cep") and not endereco.get("logradouro"):
            try:
                cep = self.cadastro.consultar_cep(endereco["cep"])
                for field in ("logradouro", "bairro", "cidade", "uf"):
                    endereco[field] = endereco.get(field) or cep.get(field, "")
                endereco["cep"] = cep["cep"]
                row["endereco"] = endereco
            except LegalFlowError as e:
                logger.warning(f"[CLIENTES] Consulta ViaCEP ignorada: {e}")
        return row

    def update(self, cpfcnpj: str, data: dict[str, Any]) -> dict[str, Any]:
        key = self.normalize_key(cpfcnpj)
        if not self.find(key):
            raise NotFoundError("Cliente não encontrado")

        changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        errors = validate_cliente_fields(changes, partial=True)
        if errors:
            raise ValidationError("Dados do cliente inválidos", errors=errors)

        if "nome" in changes:
            changes["nome"] = changes["nome"].strip()
        if "whatsapp" in changes:
            changes["whatsapp"] = normalize_whatsapp(changes["whatsapp"]) or None
        if "email" in changes:
            changes["email"] = (changes["email"] or "").strip().lower() or None
        if "endereco" in changes:
            changes["endereco"] = _clean_endereco(changes["endereco"])
        changes["updated_at"] = now_iso()

        result = self.sb.table("clientes").update(changes).eq("cpfcnpj", key).execute()
        return first_row(result) or {**changes, "cpfcnpj": key}

    def delete(self, cpfcnpj: str) -> None:
        """Remove o cliente. Recusa com jornadas activas ou planos em aberto."""
        key = self.normalize_key(cpfcnpj)
        if not self.find(key):
            raise NotFoundError("Cliente não encontrado")

        active = self.lf.table("journey_instances").select("id").eq(
            "cliente_cpfcnpj", key
        ).in_("status", ["ativo", "pausado"]).limit(1).execute()
        if active.data:
            raise ConflictError("Cliente possui jornadas activas")

        planos = self.lf.table("planos_pagamento").select("id").eq(
            "cliente_cpfcnpj", key
        ).in_("status", list(OPEN_PLANO_STATUSES)).limit(1).execute()
        if planos.data:
            raise ConflictError("Cliente possui planos de pagamento em aberto")

        self.sb.table("clientes_processos").delete().eq("cliente_cpfcnpj", key).execute()
        self.sb.table("clientes").delete().eq("cpfcnpj", key).execute()
        logger.info(f"[CLIENTES] Cliente removido: {key[:3]}***")

    # ============================================================
    # RELACIONADOS
    # ============================================================

    def processos(self, cpfcnpj: str) -> list[dict]:
        key = self.get(cpfcnpj)["cpfcnpj"]
        links = self.sb.table("clientes_processos").select("numero_cnj").eq(
            "cliente_cpfcnpj", key
        ).execute()
        cnjs = [row["numero_cnj"] for row in (links.data or [])]
        if not cnjs:
            return []
        result = self.sb.table("processos").select("*").in_(
            "numero_cnj", cnjs
        ).is_("deleted_at", "null").order("created_at", desc=True).execute()
        return result.data or []

    def planos(self, cpfcnpj: str) -> list[dict]:
        key = self.get(cpfcnpj)["cpfcnpj"]
        result = self.lf.table("planos_pagamento").select("*").eq(
            "cliente_cpfcnpj", key
        ).order("created_at", desc=True).execute()
        return result.data or []

    def jornadas(self, cpfcnpj: str) -> list[dict]:
        key = self.get(cpfcnpj)["cpfcnpj"]
        result = self.lf.table("journey_instances").select("*").eq(
            "cliente_cpfcnpj", key
        ).order("created_at", desc=True).execute()
        return result.data or []

    def documentos(self, cpfcnpj: str) -> list[dict]:
        key = self.get(cpfcnpj)["cpfcnpj"]
        result = self.sb.table("documents").select("*").eq(
            "cliente_cpfcnpj", key
        ).order("created_at", desc=True).execute()
        return result.data or []
