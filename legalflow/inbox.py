# -*- coding: utf-8 -*-
"""
INBOX - Triagem de publicações e movimentações
============================================================
Itens sem numero_cnj aguardam triagem: o advogado confirma o
processo (CNJ detectado no texto ou introduzido) e o item é
vinculado; os advogados do processo são notificados.
============================================================
"""

import logging
from typing import Any, Optional

from legalflow.db import BaseManager, first_row, paginate
from legalflow.errors import NotFoundError, ValidationError
from legalflow.notifications import NotificationManager
from legalflow.processos import ProcessoManager, parse_cnj
from legalflow.utils.documentos import detect_cnj_in_text

logger = logging.getLogger(__name__)

KINDS = {
    "publicacoes": {"date_field": "data_publicacao",
                    "resumo_keys": ("resumo", "conteudo", "texto", "description")},
    "movimentacoes": {"date_field": "data_movimentacao",
                      "resumo_keys": ("texto", "conteudo", "movimento", "description")},
}
TRIBUNAL_KEYS = ("tribunal", "orgao", "orgaoJulgador", "source", "origem")

HIGH_PRIORITY_KEYWORDS = (
    "urgente", "liminar", "tutela", "medida cautelar", "citação", "intimação",
    "prazo", "recurso", "sentença", "acórdão", "decisão",
)
MEDIUM_PRIORITY_KEYWORDS = (
    "manifestação", "petição", "juntada", "certidão", "conclusão", "vista", "carga",
)
SEM_RESUMO = "Sem resumo disponível"
NAO_INFORMADO = "Não informado"
MAX_RESUMO = 200


def calculate_priority(text: Optional[str]) -> str:
    content = (text or "").lower()
    if any(k in content for k in HIGH_PRIORITY_KEYWORDS):
        return "alta"
    if any(k in content for k in MEDIUM_PRIORITY_KEYWORDS):
        return "media"
    return "baixa"


def extract_resumo(data: Optional[dict], kind: str) -> str:
    data = data or {}
    for key in KINDS[kind]["resumo_keys"]:
        value = data.get(key)
        if value and str(value).strip():
            return str(value).strip()[:MAX_RESUMO]
    return SEM_RESUMO


def extract_tribunal_origem(data: Optional[dict]) -> str:
    data = data or {}
    for key in TRIBUNAL_KEYS:
        if data.get(key):
            return str(data[key])
    return NAO_INFORMADO


def _full_text(data: Optional[dict]) -> str:
    data = data or {}
    return " ".join(str(v) for v in data.values() if isinstance(v, str))


def enrich_item(item: dict, kind: str) -> dict[str, Any]:
    data = item.get("data") or {}
    resumo = extract_resumo(data, kind)
    return {
        **item,
        "resumo": resumo,
        "tribunal_origem": extract_tribunal_origem(data),
        "cnjs_detectados": detect_cnj_in_text(_full_text(data)),
        "prioridade": calculate_priority(_full_text(data) or resumo),
    }


def _check_kind(kind: str) -> str:
    if kind not in KINDS:
        raise ValidationError("Tipo de item inválido", field="kind", code="INVALID_ENUM")
    return kind


class InboxManager(BaseManager):
    """Triagem → vínculo → notificação."""

    def list_pending(self, kind: str = "publicacoes", page: int = 1, limit: int = 20) -> dict[str, Any]:
        _check_kind(kind)
        q = self.sb.table(kind).select("*", count="exact").is_("numero_cnj", "null").order(
            KINDS[kind]["date_field"], desc=True)
        page_data = paginate(q, page, limit)
        page_data["items"] = [enrich_item(item, kind) for item in page_data["items"]]
        return page_data

    def get_item(self, kind: str, item_id) -> dict[str, Any]:
        _check_kind(kind)
        item = first_row(self.sb.table(kind).select("*").eq("id", item_id).limit(1).execute())
        if not item:
            raise NotFoundError("Item não encontrado")
        return item

    def link(self, kind: str, item_id, cnj: str, create_processo: bool = False,
             linked_by: Optional[str] = None) -> dict[str, Any]:
        """
        Vincula um item ao processo `cnj`.

        Raises:
            ValidationError: CNJ inválido
            NotFoundError: item inexistente ou processo inexistente (sem create_processo)
        """
        numero = parse_cnj(cnj)
        item = self.get_item(kind, item_id)
        processos = ProcessoManager(self.sb)

        if not processos.find(numero):
            if not create_processo:
                raise NotFoundError("Processo não encontrado")
            processos.create({"numero_cnj": numero})
            logger.info(f"[INBOX] Processo {numero} criado a partir da triagem")

        updated = first_row(
            self.sb.table(kind).update({"numero_cnj": numero}).eq("id", item_id).execute()
        ) or {**item, "numero_cnj": numero}

        notifier = NotificationManager(self.sb)
        resumo = extract_resumo(item.get("data"), kind)
        notified = 0
        for advogado in processos.advogados(numero):
            notifier.create(
                title=f"Nova {'publicação' if kind == 'publicacoes' else 'movimentação'} vinculada",
                message=f"Processo {numero}: {resumo[:150]}",
                oab=str(advogado["oab"]),
                type="prazo" if calculate_priority(resumo) == "alta" else "info",
                link=f"/processos/{numero}",
            )
            notified += 1

        logger.info(f"[INBOX] {kind} {item_id} vinculado a {numero} ({notified} advogado(s) notificados)")
        return {"item": updated, "numero_cnj": numero, "notified": notified}

    def bulk_link(self, kind: str, item_ids: list, cnj: str) -> dict[str, Any]:
        linked, failed = [], []
        for item_id in item_ids:
            try:
                self.link(kind, item_id, cnj)
                linked.append(item_id)
            except (NotFoundError, ValidationError) as e:
                failed.append({"id": item_id, "error": e.message})
        return {"linked": linked, "failed": failed}

    def stats(self) -> dict[str, Any]:
        result: dict[str, Any] = {"total": 0, "by_kind": {}, "by_priority": {"alta": 0, "media": 0, "baixa": 0}}
        for kind in KINDS:
            items = self.sb.table(kind).select("id, data").is_("numero_cnj", "null").execute().data or []
            result["by_kind"][kind] = len(items)
            result["total"] += len(items)
            for item in items:
                prioridade = enrich_item(item, kind)["prioridade"]
                result["by_priority"][prioridade] += 1
        return result
