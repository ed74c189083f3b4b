# -*- coding: utf-8 -*-
"""
DOCUMENTOS - Metadados (public.documents) + ficheiros no Supabase Storage
============================================================
Caminho no bucket: {numero_cnj | cliente_cpfcnpj | geral}/{uuid}_{nome}
============================================================
"""

import logging
import re
import uuid
from pathlib import PurePosixPath
from typing import Any, Optional

from supabase import Client

from legalflow.config import DOCUMENTS_BUCKET, MAX_DOCUMENT_SIZE, SIGNED_URL_TTL
from legalflow.db import BaseManager, first_row, paginate
from legalflow.errors import NotFoundError, ValidationError
from legalflow.utils.datas import now_iso
from legalflow.utils.documentos import only_digits
from legalflow.utils.sanitize import safe_storage_path, sanitize_filename, sanitize_search_term

logger = logging.getLogger(__name__)

# Extensão → (file_type, content-type)
FILE_TYPES = {
    ".pdf": ("pdf", "application/pdf"),
    ".jpg": ("jpeg", "image/jpeg"),
    ".jpeg": ("jpeg", "image/jpeg"),
    ".png": ("png", "image/png"),
    ".txt": ("text/plain", "text/plain"),
    ".doc": ("msword", "application/msword"),
    ".docx": ("docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document"),
}
VALID_FILE_TYPES = {t for t, _ in FILE_TYPES.values()}
CATEGORIES = {"peticao", "contrato", "procuracao", "documento_pessoal", "certidao", "comprovante", "outros"}
_STORAGE_UNSAFE = re.compile(r"[^\w.\-]")
EDITABLE_FIELDS = {"description", "category", "tags", "numero_cnj", "cliente_cpfcnpj"}


def detect_file_type(filename: str) -> tuple[str, str]:
    """
    Raises:
        ValidationError: extensão não suportada
    """
    suffix = PurePosixPath(filename).suffix.lower()
    if suffix not in FILE_TYPES:
        raise ValidationError(
            f"Tipo de ficheiro não suportado: {suffix or 'sem extensão'}",
            field="file", code="INVALID_ENUM",
        )
    return FILE_TYPES[suffix]


class DocumentoManager(BaseManager):
    """Upload, listagem e download de documentos."""

    def __init__(self, supabase_client: Client, bucket: str = DOCUMENTS_BUCKET):
        super().__init__(supabase_client)
        self.bucket = bucket

    def _storage(self):
        return self.sb.storage.from_(self.bucket)

    def list_documentos(
        self,
        page: int = 1,
        limit: int = 10,
        query: Optional[str] = None,
        numero_cnj: Optional[str] = None,
        cliente_cpfcnpj: Optional[str] = None,
        file_type: Optional[str] = None,
        category: Optional[str] = None,
    ) -> dict[str, Any]:
        q = self.sb.table("documents").select("*", count="exact")
        term = sanitize_search_term(query)
        if term:
            q = q.or_(f"file_name.ilike.%{term}%,description.ilike.%{term}%")
        if numero_cnj:
            q = q.eq("numero_cnj", numero_cnj)
        if cliente_cpfcnpj:
            q = q.eq("cliente_cpfcnpj", only_digits(cliente_cpfcnpj))
        if file_type:
            if file_type not in VALID_FILE_TYPES:
                raise ValidationError("Tipo de ficheiro inválido", field="file_type", code="INVALID_ENUM")
            q = q.eq("file_type", file_type)
        if category:
            q = q.eq("category", category)
        return paginate(q.order("created_at", desc=True), page, limit)

    def get(self, document_id: str) -> dict[str, Any]:
        doc = first_row(self.sb.table("documents").select("*").eq("id", document_id).limit(1).execute())
        if not doc:
            raise NotFoundError("Documento não encontrado")
        return doc

    def upload(
        self,
        file_name: str,
        content: bytes,
        numero_cnj: Optional[str] = None,
        cliente_cpfcnpj: Optional[str] = None,
        category: str = "outros",
        description: str = "",
        tags: Optional[list[str]] = None,
        uploaded_by: Optional[str] = None,
    ) -> dict[str, Any]:
        if not content:
            raise ValidationError("Ficheiro vazio", field="file", code="REQUIRED_FIELD")
        if len(content) > MAX_DOCUMENT_SIZE:
            raise ValidationError(
                f"Ficheiro excede o tamanho máximo ({MAX_DOCUMENT_SIZE // (1024 * 1024)}MB)",
                field="file", code="MAX_LENGTH",
            )
        if category not in CATEGORIES:
            raise ValidationError("Categoria inválida", field="category", code="INVALID_ENUM")

        try:
            safe_name = _STORAGE_UNSAFE.sub("_", sanitize_filename(file_name))
        except ValueError:
            raise ValidationError("Nome de ficheiro inválido", field="file")
        file_type, content_type = detect_file_type(safe_name)

        cliente_key = only_digits(cliente_cpfcnpj) if cliente_cpfcnpj else None
        folder = numero_cnj or cliente_key or "geral"
        try:
            path = safe_storage_path(folder, f"{uuid.uuid4().hex}_{safe_name}")
        except ValueError:
            raise ValidationError("Caminho de armazenamento inválido", field="file")

        self._storage().upload(
            path=path,
            file=content,
            file_options={"content-type": content_type, "upsert": "false"},
        )

        row = {
            "file_name": safe_name,
            "file_path": path,
            "file_size": len(content),
            "file_type": file_type,
            "category": category,
            "numero_cnj": numero_cnj,
            "cliente_cpfcnpj": cliente_key,
            "description": description,
            "tags": tags or [],
            "uploaded_by": uploaded_by,
            "created_at": now_iso(),
        }
        try:
            created = first_row(self.sb.table("documents").insert(row).execute()) or row
        except Exception:
            # Não deixar ficheiros órfãos no bucket
            logger.error(f"[DOCUMENTOS] Falha ao gravar metadados, a remover {path}")
            self._storage().remove([path])
            raise
        logger.info(f"[DOCUMENTOS] Upload: {safe_name} ({len(content)} bytes) → {path}")
        return created

    def update(self, document_id: str, data: dict[str, Any]) -> dict[str, Any]:
        self.get(document_id)
        changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        if "category" in changes and changes["category"] not in CATEGORIES:
            raise ValidationError("Categoria inválida", field="category", code="INVALID_ENUM")
        if changes.get("cliente_cpfcnpj"):
            changes["cliente_cpfcnpj"] = only_digits(changes["cliente_cpfcnpj"])
        changes["updated_at"] = now_iso()
        return first_row(self.sb.table("documents").update(changes).eq("id", document_id).execute()) or changes

    def delete(self, document_id: str) -> None:
        doc = self.get(document_id)
        if doc.get("file_path"):
            self._storage().remove([doc["file_path"]])
        self.sb.table("documents").delete().eq("id", document_id).execute()
        logger.info(f"[DOCUMENTOS] Documento removido: {document_id}")

    def download_url(self, document_id: str, expires_in: int = SIGNED_URL_TTL) -> dict[str, Any]:
        doc = self.get(document_id)
        signed = self._storage().create_signed_url(doc["file_path"], expires_in)
        url = (signed.get("signedURL") or signed.get("signedUrl")) if isinstance(signed, dict) else None
        if not url:
            raise NotFoundError("Ficheiro não encontrado no armazenamento")
        return {"url": url, "file_name": doc["file_name"], "expires_in": expires_in}

    def por_processo(self, cnj: str) -> list[dict]:
        return self.sb.table("documents").select("*").eq(
            "numero_cnj", cnj
        ).order("created_at", desc=True).execute().data or []

    def por_cliente(self, cpfcnpj: str) -> list[dict]:
        return self.sb.table("documents").select("*").eq(
            "cliente_cpfcnpj", only_digits(cpfcnpj)
        ).order("created_at", desc=True).execute().data or []
