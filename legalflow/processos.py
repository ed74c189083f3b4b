# -*- coding: utf-8 -*-
"""
PROCESSOS - Acompanhamento de processos judiciais
============================================================
Chave: numero_cnj na forma mascarada (NNNNNNN-DD.AAAA.J.TR.OOOO).

Remoção é lógica (deleted_at): movimentações, publicações e
documentos continuam ligados ao CNJ para auditoria.

O campo `data` guarda o payload do fornecedor de dados judiciais
(Advise/Escavador); a capa do processo é extraída dele com
fallbacks para as várias estruturas conhecidas.
============================================================
"""

import logging
from typing import Any, Optional

from legalflow.db import BaseManager, first_row, paginate
from legalflow.errors import ConflictError, NotFoundError, ValidationError
from legalflow.utils.datas import now_iso, parse_datetime
from legalflow.utils.documentos import normalize_cnj, only_digits, validate_cpfcnpj
from legalflow.utils.sanitize import sanitize_search_term

logger = logging.getLogger(__name__)

NAO_INFORMADO = "Não informado"
EDITABLE_FIELDS = {"tribunal_sigla", "titulo_polo_ativo", "titulo_polo_passivo", "data", "crm_id", "decisoes", "tags"}
MAX_TRIBUNAL_SIGLA = 10
MAX_TITULO_POLO = 500


def parse_cnj(cnj: str) -> str:
    """CNJ normalizado ou ValidationError('CNJ inválido')."""
    try:
        return normalize_cnj(cnj)
    except ValueError:
        raise ValidationError("CNJ inválido", field="numero_cnj")


def normalize_tags(tags) -> list[str]:
    result: list[str] = []
    for tag in tags or []:
        tag = str(tag).strip().lower()
        if tag and tag not in result:
            result.append(tag[:50])
    return result


def _first(*values):
    for value in values:
        if value:
            return value
    return None


def _nome(value):
    """Aceita {'nome': ...} ou string simples."""
    if isinstance(value, dict):
        return value.get("nome")
    return value


def extract_capa(data: Optional[dict]) -> dict[str, Any]:
    """
    Extrai a capa do processo do payload do fornecedor.

    Cada campo tenta várias chaves conhecidas e cai em "Não informado".
    """
    if not data:
        return {
            "area": NAO_INFORMADO,
            "classe": NAO_INFORMADO,
            "assunto": NAO_INFORMADO,
            "orgao_julgador": NAO_INFORMADO,
            "valor_causa": None,
            "situacao": NAO_INFORMADO,
            "audiencias": [],
        }

    classe = data.get("classe") if isinstance(data.get("classe"), dict) else {}
    classe_processual = data.get("classeProcessual")
    classe_processual_dict = classe_processual if isinstance(classe_processual, dict) else {}
    assuntos = data.get("assunto") if isinstance(data.get("assunto"), list) else []
    assuntos_alt = data.get("assuntos") if isinstance(data.get("assuntos"), list) else []

    return {
        "area": _first(data.get("area"), classe.get("area"), classe_processual_dict.get("area")) or NAO_INFORMADO,
        "classe": _first(classe.get("nome"), _nome(classe_processual)) or NAO_INFORMADO,
        "assunto": _first(
            _nome(assuntos[0]) if assuntos else None,
            _nome(data.get("assuntoPrincipal")),
            _nome(assuntos_alt[0]) if assuntos_alt else None,
        ) or NAO_INFORMADO,
        "orgao_julgador": _first(
            _nome(data.get("orgaoJulgador")),
            _nome(data.get("tribunal")),
            data.get("varaDistribuicao"),
        ) or NAO_INFORMADO,
        "valor_causa": _first(data.get("valorCausa"), data.get("valor"), data.get("valorDaCausa")),
        "situacao": _first(data.get("situacao"), data.get("status")) or NAO_INFORMADO,
        "audiencias": _first(data.get("audiencias"), data.get("proximasAudiencias")) or [],
    }


def _resumo_item(data: Optional[dict], *keys: str) -> str:
    data = data or {}
    for key in keys:
        if data.get(key):
            return str(data[key])[:300]
    return ""


class ProcessoManager(BaseManager):
    """CRUD de processos e consultas relacionadas."""

    # ============================================================
    # LEITURA
    # ============================================================

    def list_processos(
        self,
        page: int = 1,
        limit: int = 10,
        query: Optional[str] = None,
        tribunal_sigla: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> dict[str, Any]:
        q = self.sb.table("processos").select("*", count="exact").is_("deleted_at", "null")

        term = sanitize_search_term(query)
        if term:
            q = q.or_(
                f"numero_cnj.ilike.%{term}%,titulo_polo_ativo.ilike.%{term}%,"
                f"titulo_polo_passivo.ilike.%{term}%"
            )
        if tribunal_sigla:
            q = q.eq("tribunal_sigla", tribunal_sigla.upper())
        if tag:
            q = q.contains("tags", [tag.strip().lower()])

        return paginate(q.order("created_at", desc=True), page, limit)

    def find(self, cnj: str, include_deleted: bool = False) -> Optional[dict[str, Any]]:
        q = self.sb.table("processos").select("*").eq("numero_cnj", cnj)
        if not include_deleted:
            q = q.is_("deleted_at", "null")
        return first_row(q.limit(1).execute())

    def get(self, cnj: str) -> dict[str, Any]:
        cnj = parse_cnj(cnj)
        processo = self.find(cnj)
        if not processo:
            raise NotFoundError("Processo não encontrado")
        return processo

    # ============================================================
    # ESCRITA
    # ============================================================

    def _validate(self, data: dict[str, Any]) -> None:
        errors = []
        sigla = data.get("tribunal_sigla")
        if sigla and len(sigla) > MAX_TRIBUNAL_SIGLA:
            errors.append({"field": "tribunal_sigla", "code": "MAX_LENGTH",
                           "message": f"Sigla do tribunal deve ter no máximo {MAX_TRIBUNAL_SIGLA} caracteres"})
        for field in ("titulo_polo_ativo", "titulo_polo_passivo"):
            if data.get(field) and len(data[field]) > MAX_TITULO_POLO:
                errors.append({"field": field, "code": "MAX_LENGTH",
                               "message": f"Título deve ter no máximo {MAX_TITULO_POLO} caracteres"})
        if errors:
            raise ValidationError("Dados do processo inválidos", errors=errors)

    def create(self, data: dict[str, Any]) -> dict[str, Any]:
        cnj = parse_cnj(data.get("numero_cnj", ""))
        self._validate(data)

        existing = self.find(cnj, include_deleted=True)
        if existing and not existing.get("deleted_at"):
            raise ConflictError("Processo já existe")

        row = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        row["numero_cnj"] = cnj
        if row.get("tribunal_sigla"):
            row["tribunal_sigla"] = row["tribunal_sigla"].upper()
        row["tags"] = normalize_tags(row.get("tags"))
        row["deleted_at"] = None
        row["updated_at"] = now_iso()

        if existing:
            # Processo removido anteriormente: reactivar com os novos dados
            result = self.sb.table("processos").update(row).eq("numero_cnj", cnj).execute()
            logger.info(f"[PROCESSOS] Processo reactivado: {cnj}")
        else:
            row["created_at"] = row["updated_at"]
            result = self.sb.table("processos").insert(row).execute()
            logger.info(f"[PROCESSOS] Processo criado: {cnj}")
        return first_row(result) or row

    def update(self, cnj: str, data: dict[str, Any]) -> dict[str, Any]:
        processo = self.get(cnj)
        changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        self._validate(changes)
        if changes.get("tribunal_sigla"):
            changes["tribunal_sigla"] = changes["tribunal_sigla"].upper()
        if "tags" in changes:
            changes["tags"] = normalize_tags(changes["tags"])
        changes["updated_at"] = now_iso()
        result = self.sb.table("processos").update(changes).eq("numero_cnj", processo["numero_cnj"]).execute()
        return first_row(result) or {**processo, **changes}

    def delete(self, cnj: str) -> None:
        """Remoção lógica (deleted_at)."""
        processo = self.get(cnj)
        self.sb.table("processos").update({
            "deleted_at": now_iso(),
        }).eq("numero_cnj", processo["numero_cnj"]).execute()
        logger.info(f"[PROCESSOS] Processo removido (soft delete): {processo['numero_cnj']}")

    def add_tag(self, cnj: str, tag: str) -> list[str]:
        processo = self.get(cnj)
        tags = normalize_tags((processo.get("tags") or []) + [tag])
        self.sb.table("processos").update({"tags": tags}).eq("numero_cnj", processo["numero_cnj"]).execute()
        return tags

    def remove_tag(self, cnj: str, tag: str) -> list[str]:
        processo = self.get(cnj)
        target = tag.strip().lower()
        tags = [t for t in normalize_tags(processo.get("tags")) if t != target]
        self.sb.table("processos").update({"tags": tags}).eq("numero_cnj", processo["numero_cnj"]).execute()
        return tags

    # ============================================================
    # VÍNCULOS
    # ============================================================

    def clientes(self, cnj: str) -> list[dict]:
        processo = self.get(cnj)
        links = self.sb.table("clientes_processos").select("cliente_cpfcnpj").eq(
            "numero_cnj", processo["numero_cnj"]
        ).execute()
        keys = [row["cliente_cpfcnpj"] for row in (links.data or [])]
        if not keys:
            return []
        return self.sb.table("clientes").select("*").in_("cpfcnpj", keys).execute().data or []

    def link_cliente(self, cnj: str, cpfcnpj: str) -> dict[str, Any]:
        processo = self.get(cnj)
        key = only_digits(cpfcnpj)
        if not validate_cpfcnpj(key):
            raise ValidationError("CPF/CNPJ inválido", field="cpfcnpj")
        cliente = self.sb.table("clientes").select("cpfcnpj").eq("cpfcnpj", key).limit(1).execute()
        if not cliente.data:
            raise NotFoundError("Cliente não encontrado")

        existing = self.sb.table("clientes_processos").select("*").eq(
            "numero_cnj", processo["numero_cnj"]
        ).eq("cliente_cpfcnpj", key).limit(1).execute()
        if existing.data:
            return existing.data[0]

        row = {"numero_cnj": processo["numero_cnj"], "cliente_cpfcnpj": key, "created_at": now_iso()}
        return first_row(self.sb.table("clientes_processos").insert(row).execute()) or row

    def unlink_cliente(self, cnj: str, cpfcnpj: str) -> None:
        processo = self.get(cnj)
        self.sb.table("clientes_processos").delete().eq(
            "numero_cnj", processo["numero_cnj"]
        ).eq("cliente_cpfcnpj", only_digits(cpfcnpj)).execute()

    def advogados(self, cnj: str) -> list[dict]:
        processo = self.get(cnj)
        links = self.sb.table("advogados_processos").select("oab").eq(
            "numero_cnj", processo["numero_cnj"]
        ).execute()
        oabs = [row["oab"] for row in (links.data or [])]
        if not oabs:
            return []
        return self.sb.table("advogados").select("*").in_("oab", oabs).execute().data or []

    def link_advogado(self, cnj: str, oab: str) -> dict[str, Any]:
        processo = self.get(cnj)
        advogado = self.sb.table("advogados").select("oab").eq("oab", oab).limit(1).execute()
        if not advogado.data:
            raise NotFoundError("Advogado não encontrado")
        existing = self.sb.table("advogados_processos").select("*").eq(
            "numero_cnj", processo["numero_cnj"]
        ).eq("oab", oab).limit(1).execute()
        if existing.data:
            return existing.data[0]
        row = {"numero_cnj": processo["numero_cnj"], "oab": oab, "created_at": now_iso()}
        return first_row(self.sb.table("advogados_processos").insert(row).execute()) or row

    # ============================================================
    # ANDAMENTOS
    # ============================================================

    def movimentacoes(self, cnj: str, page: int = 1, limit: int = 20) -> dict[str, Any]:
        processo = self.get(cnj)
        q = self.sb.table("movimentacoes").select("*", count="exact").eq(
            "numero_cnj", processo["numero_cnj"]
        ).order("data_movimentacao", desc=True)
        return paginate(q, page, limit)

    def publicacoes(self, cnj: str, page: int = 1, limit: int = 20) -> dict[str, Any]:
        processo = self.get(cnj)
        q = self.sb.table("publicacoes").select("*", count="exact").eq(
            "numero_cnj", processo["numero_cnj"]
        ).order("data_publicacao", desc=True)
        return paginate(q, page, limit)

    def _count(self, table, column: str, value: str) -> int:
        result = table.select("id", count="exact").eq(column, value).execute()
        return result.count if result.count is not None else len(result.data or [])

    def overview(self, cnj: str) -> dict[str, Any]:
        """Processo + capa + contagens + última movimentação."""
        processo = self.get(cnj)
        numero = processo["numero_cnj"]

        ultima = self.sb.table("movimentacoes").select("*").eq(
            "numero_cnj", numero
        ).order("data_movimentacao", desc=True).limit(1).execute()

        return {
            "processo": processo,
            "capa": extract_capa(processo.get("data")),
            "contagens": {
                "documentos": self._count(self.sb.table("documents"), "numero_cnj", numero),
                "peticoes": self._count(self.sb.table("peticoes"), "numero_cnj", numero),
                "movimentacoes": self._count(self.sb.table("movimentacoes"), "numero_cnj", numero),
                "publicacoes": self._count(self.sb.table("publicacoes"), "numero_cnj", numero),
            },
            "ultima_movimentacao": first_row(ultima),
        }

    def timeline(self, cnj: str, limit: int = 100) -> list[dict[str, Any]]:
        """
        Linha do tempo unificada do processo (mais recente primeiro).

        Junta movimentações, publicações, documentos, eventos de agenda
        e actividades em itens {kind, id, date, title, description}.
        """
        processo = self.get(cnj)
        numero = processo["numero_cnj"]
        items: list[dict[str, Any]] = []

        for mov in self.sb.table("movimentacoes").select("*").eq("numero_cnj", numero).execute().data or []:
            items.append({
                "kind": "movimentacao",
                "id": mov.get("id"),
                "date": mov.get("data_movimentacao") or mov.get("created_at"),
                "title": "Movimentação",
                "description": _resumo_item(mov.get("data"), "texto", "conteudo", "descricao", "titulo"),
            })
        for pub in self.sb.table("publicacoes").select("*").eq("numero_cnj", numero).execute().data or []:
            items.append({
                "kind": "publicacao",
                "id": pub.get("id"),
                "date": pub.get("data_publicacao") or pub.get("created_at"),
                "title": "Publicação",
                "description": _resumo_item(pub.get("data"), "resumo", "texto", "conteudo", "despacho"),
            })
        for doc in self.sb.table("documents").select("*").eq("numero_cnj", numero).execute().data or []:
            items.append({
                "kind": "documento",
                "id": doc.get("id"),
                "date": doc.get("created_at"),
                "title": doc.get("file_name") or "Documento",
                "description": doc.get("description") or "",
            })
        for ev in self.lf.table("eventos_agenda").select("*").eq("numero_cnj", numero).execute().data or []:
            items.append({
                "kind": "evento",
                "id": ev.get("id"),
                "date": ev.get("starts_at"),
                "title": ev.get("title") or "Evento",
                "description": ev.get("description") or "",
            })
        for act in self.lf.table("activities").select("*").eq("numero_cnj", numero).execute().data or []:
            items.append({
                "kind": "atividade",
                "id": act.get("id"),
                "date": act.get("completed_at") or act.get("created_at"),
                "title": act.get("title") or "Actividade",
                "description": act.get("status") or "",
            })

        dated = [i for i in items if i["date"]]
        dated.sort(key=lambda i: parse_datetime(i["date"]), reverse=True)
        return dated[:limit]
