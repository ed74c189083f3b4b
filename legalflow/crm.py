# -*- coding: utf-8 -*-
"""
CRM - Contactos unificados e leads
============================================================
Contacto = cliente (public.clientes) ou lead (legalflow.leads),
apresentados no mesmo formato:
    {id, kind, nome, email, whatsapp, cpfcnpj, created_at}
============================================================
"""

import logging
from typing import Any, Optional

from legalflow.clientes import ClienteManager
from legalflow.db import BaseManager, clamp_pagination, first_row, page_result
from legalflow.errors import ConflictError, NotFoundError, ValidationError
from legalflow.utils.datas import now_iso
from legalflow.utils.documentos import normalize_whatsapp, validate_email, validate_whatsapp
from legalflow.utils.sanitize import sanitize_search_term

logger = logging.getLogger(__name__)

LEAD_STATUSES = ("novo", "contactado", "qualificado", "converted", "perdido")
LEAD_FIELDS = {"nome", "email", "whatsapp", "source", "status", "notes", "owner_oab"}
CONTACT_KINDS = ("cliente", "lead")


def _validate_lead(data: dict[str, Any], partial: bool = False) -> None:
    errors = []
    if not partial or "nome" in data:
        if not (data.get("nome") or "").strip():
            errors.append({"field": "nome", "message": "Nome é obrigatório", "code": "REQUIRED_FIELD"})
    if data.get("email") and not validate_email(data["email"]):
        errors.append({"field": "email", "message": "Email inválido", "code": "INVALID_FORMAT"})
    if data.get("whatsapp") and not validate_whatsapp(data["whatsapp"]):
        errors.append({"field": "whatsapp", "message": "WhatsApp inválido", "code": "INVALID_FORMAT"})
    if "status" in data and data["status"] not in LEAD_STATUSES:
        errors.append({"field": "status", "message": "Estado inválido", "code": "INVALID_ENUM"})
    if errors:
        raise ValidationError("Dados do lead inválidos", errors=errors)


def cliente_to_contact(cliente: dict) -> dict[str, Any]:
    return {
        "id": cliente.get("cpfcnpj"),
        "kind": "cliente",
        "nome": cliente.get("nome") or "",
        "email": cliente.get("email"),
        "whatsapp": cliente.get("whatsapp"),
        "cpfcnpj": cliente.get("cpfcnpj"),
        "created_at": cliente.get("created_at"),
    }


def lead_to_contact(lead: dict) -> dict[str, Any]:
    return {
        "id": lead.get("id"),
        "kind": "lead",
        "nome": lead.get("nome") or "",
        "email": lead.get("email"),
        "whatsapp": lead.get("whatsapp"),
        "cpfcnpj": lead.get("cliente_cpfcnpj"),
        "created_at": lead.get("created_at"),
    }


class CRMManager(BaseManager):
    """Contactos e leads."""

    def contacts(self, query: Optional[str] = None, kind: Optional[str] = None,
                 page: int = 1, limit: int = 20) -> dict[str, Any]:
        if kind and kind not in CONTACT_KINDS:
            raise ValidationError("Tipo de contacto inválido", field="kind", code="INVALID_ENUM")
        term = sanitize_search_term(query)
        contacts: list[dict] = []

        if kind in (None, "cliente"):
            q = self.sb.table("clientes").select("*")
            if term:
                q = q.or_(f"nome.ilike.%{term}%,email.ilike.%{term}%,cpfcnpj.ilike.%{term}%")
            contacts += [cliente_to_contact(c) for c in q.execute().data or []]
        if kind in (None, "lead"):
            q = self.lf.table("leads").select("*").neq("status", "converted")
            if term:
                q = q.or_(f"nome.ilike.%{term}%,email.ilike.%{term}%")
            contacts += [lead_to_contact(lead) for lead in q.execute().data or []]

        contacts.sort(key=lambda c: c["nome"].lower())
        page, limit = clamp_pagination(page, limit)
        start = (page - 1) * limit
        return page_result(contacts[start:start + limit], len(contacts), page, limit)

    # ============================================================
    # LEADS
    # ============================================================

    def list_leads(self, status: Optional[str] = None, owner_oab: Optional[str] = None) -> list[dict]:
        q = self.lf.table("leads").select("*")
        if status:
            q = q.eq("status", status)
        if owner_oab:
            q = q.eq("owner_oab", owner_oab)
        return q.order("created_at", desc=True).execute().data or []

    def get_lead(self, lead_id: str) -> dict[str, Any]:
        lead = first_row(self.lf.table("leads").select("*").eq("id", lead_id).limit(1).execute())
        if not lead:
            raise NotFoundError("Lead não encontrado")
        return lead

    def create_lead(self, data: dict[str, Any]) -> dict[str, Any]:
        data = {"status": "novo", **data}
        _validate_lead(data)
        row = {k: v for k, v in data.items() if k in LEAD_FIELDS}
        row["nome"] = row["nome"].strip()
        if row.get("whatsapp"):
            row["whatsapp"] = normalize_whatsapp(row["whatsapp"])
        row["created_at"] = now_iso()
        lead = first_row(self.lf.table("leads").insert(row).execute()) or row
        logger.info(f"[CRM] Lead criado: '{row['nome']}' ({row.get('source') or 'sem origem'})")
        return lead

    def update_lead(self, lead_id: str, data: dict[str, Any]) -> dict[str, Any]:
        lead = self.get_lead(lead_id)
        changes = {k: v for k, v in data.items() if k in LEAD_FIELDS}
        _validate_lead(changes, partial=True)
        if changes.get("whatsapp"):
            changes["whatsapp"] = normalize_whatsapp(changes["whatsapp"])
        changes["updated_at"] = now_iso()
        return first_row(self.lf.table("leads").update(changes).eq("id", lead_id).execute()) or {
            **lead, **changes}

    def delete_lead(self, lead_id: str) -> None:
        self.get_lead(lead_id)
        self.lf.table("leads").delete().eq("id", lead_id).execute()

    def convert_lead(self, lead_id: str, cpfcnpj: str, clientes: Optional[ClienteManager] = None) -> dict[str, Any]:
        """
        Converte um lead em cliente.

        Raises:
            ConflictError: lead já convertido ou cliente já existe
            ValidationError: CPF/CNPJ inválido
        """
        lead = self.get_lead(lead_id)
        if lead.get("status") == "converted":
            raise ConflictError("Lead já convertido")

        clientes = clientes or ClienteManager(self.sb)
        key = clientes.normalize_key(cpfcnpj)
        cliente = clientes.create({
            "cpfcnpj": key,
            "nome": lead.get("nome"),
            "email": lead.get("email"),
            "whatsapp": lead.get("whatsapp"),
            "observacoes": lead.get("notes"),
        })
        changes = {"status": "converted", "cliente_cpfcnpj": key, "converted_at": now_iso()}
        updated = first_row(self.lf.table("leads").update(changes).eq("id", lead_id).execute()) or {
            **lead, **changes}
        logger.info(f"[CRM] Lead {lead_id} convertido em cliente {key}")
        return {"lead": updated, "cliente": cliente}
