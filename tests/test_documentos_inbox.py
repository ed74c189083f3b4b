# -*- coding: utf-8 -*-
"""
DOCUMENTOS AND INBOX TRIAGE
=======================================
"""

import pytest

from legalflow.documentos import DocumentoManager, detect_file_type
from legalflow.errors import NotFoundError, ValidationError
from legalflow.inbox import (
    SEM_RESUMO,
    InboxManager,
    calculate_priority,
    enrich_item,
    extract_resumo,
    extract_tribunal_origem,
)
from legalflow.processos import ProcessoManager

CNJ = "0001234-56.2024.8.26.0100"


class TestDocumentos:
    """Tests for DocumentoManager with the in-memory storage."""

    def test_detect_file_type(self):
        assert detect_file_type("Contrato.PDF") == ("pdf", "application/pdf")
        assert detect_file_type("foto.jpeg")[0] == "jpeg"
        with pytest.raises(ValidationError):
            detect_file_type("script.exe")
        with pytest.raises(ValidationError):
            detect_file_type("sem_extensao")

    def test_upload_stores_file_and_metadata(self, fake_sb):
        manager = DocumentoManager(fake_sb)
        doc = manager.upload("../../Petição inicial.pdf", b"%PDF-1.4 conteudo", numero_cnj=CNJ,
                             category="peticao", uploaded_by="user-1")
        assert doc["file_name"] == "Petição_inicial.pdf"
        assert doc["file_path"].startswith(f"{CNJ}/")
        assert doc["file_path"].endswith("_Petição_inicial.pdf")
        assert doc["file_size"] == 17
        assert doc["file_type"] == "pdf"
        assert fake_sb.storage.files[("documentos", doc["file_path"])] == b"%PDF-1.4 conteudo"

    def test_upload_folder_fallbacks(self, fake_sb):
        manager = DocumentoManager(fake_sb)
        by_cliente = manager.upload("rg.png", b"x", cliente_cpfcnpj="529.982.247-25")
        assert by_cliente["file_path"].startswith("52998224725/")
        assert by_cliente["cliente_cpfcnpj"] == "52998224725"
        assert manager.upload("nota.txt", b"x")["file_path"].startswith("geral/")

    def test_upload_validation(self, fake_sb):
        manager = DocumentoManager(fake_sb)
        with pytest.raises(ValidationError):
            manager.upload("a.pdf", b"")
        with pytest.raises(ValidationError):
            manager.upload("a.pdf", b"x", category="diversos")
        with pytest.raises(ValidationError):
            manager.upload("a.zip", b"x")
        with pytest.raises(ValidationError):
            manager.upload("a.pdf", b"x", numero_cnj="../segredo")
        assert fake_sb.storage.files == {}

    def test_list_filters(self, fake_sb):
        manager = DocumentoManager(fake_sb)
        manager.upload("contrato.pdf", b"x", numero_cnj=CNJ, category="contrato", description="honorários")
        manager.upload("rg.png", b"x", cliente_cpfcnpj="52998224725", category="documento_pessoal")
        assert manager.list_documentos()["pagination"]["total"] == 2
        assert manager.list_documentos(query="honor")["items"][0]["file_name"] == "contrato.pdf"
        assert manager.list_documentos(file_type="png")["pagination"]["total"] == 1
        assert manager.list_documentos(cliente_cpfcnpj="529.982.247-25")["pagination"]["total"] == 1
        with pytest.raises(ValidationError):
            manager.list_documentos(file_type="exe")

    def test_update_and_download(self, fake_sb):
        manager = DocumentoManager(fake_sb)
        doc = manager.upload("contrato.pdf", b"x")
        updated = manager.update(doc["id"], {"category": "contrato", "file_path": "outro"})
        assert updated["category"] == "contrato"
        assert updated["file_path"] == doc["file_path"]
        with pytest.raises(ValidationError):
            manager.update(doc["id"], {"category": "nope"})

        link = manager.download_url(doc["id"], expires_in=60)
        assert link["file_name"] == "contrato.pdf"
        assert link["url"].endswith("?expires=60")

    def test_delete_removes_file(self, fake_sb):
        manager = DocumentoManager(fake_sb)
        doc = manager.upload("contrato.pdf", b"x", numero_cnj=CNJ)
        manager.delete(doc["id"])
        assert fake_sb.storage.files == {}
        with pytest.raises(NotFoundError):
            manager.get(doc["id"])

    def test_download_missing_file(self, fake_sb):
        manager = DocumentoManager(fake_sb)
        doc = manager.upload("contrato.pdf", b"x")
        fake_sb.storage.files.clear()
        with pytest.raises(NotFoundError):
            manager.download_url(doc["id"])

    def test_por_processo(self, fake_sb):
        manager = DocumentoManager(fake_sb)
        manager.upload("a.pdf", b"x", numero_cnj=CNJ)
        manager.upload("b.pdf", b"x")
        assert [d["file_name"] for d in manager.por_processo(CNJ)] == ["a.pdf"]


class TestInboxHelpers:
    """Tests for the triage helpers."""

    @pytest.mark.parametrize("text,priority", [
        ("Intimação para manifestação em 5 dias", "alta"),
        ("Juntada de petição", "media"),
        ("Remessa dos autos ao arquivo", "baixa"),
        (None, "baixa"),
    ])
    def test_priority(self, text, priority):
        assert calculate_priority(text) == priority

    def test_resumo_and_tribunal(self):
        assert extract_resumo({"conteudo": "  Despacho  "}, "publicacoes") == "Despacho"
        assert extract_resumo({"resumo": "x" * 300}, "publicacoes") == "x" * 200
        assert extract_resumo({}, "movimentacoes") == SEM_RESUMO
        assert extract_tribunal_origem({"orgaoJulgador": "TJSP"}) == "TJSP"
        assert extract_tribunal_origem(None) == "Não informado"

    def test_enrich_detects_cnj(self):
        item = enrich_item({"id": 1, "data": {
            "texto": f"Processo 00012345620248260100 e {CNJ}: sentença publicada",
        }}, "movimentacoes")
        assert item["cnjs_detectados"] == [CNJ]
        assert item["prioridade"] == "alta"


class TestInboxManager:
    """Tests for InboxManager against the in-memory Supabase."""

    @pytest.fixture
    def pending(self, fake_sb):
        return fake_sb.seed("publicacoes", [
            {"id": 1, "numero_cnj": None, "data_publicacao": "2024-03-01T10:00:00+00:00",
             "data": {"resumo": "Intimação da sentença", "tribunal": "TJSP"}},
            {"id": 2, "numero_cnj": None, "data_publicacao": "2024-03-02T10:00:00+00:00",
             "data": {"resumo": "Juntada de documento"}},
            {"id": 3, "numero_cnj": CNJ, "data_publicacao": "2024-03-03T10:00:00+00:00", "data": {}},
        ], schema="public")

    def test_list_pending(self, fake_sb, pending):
        page = InboxManager(fake_sb).list_pending("publicacoes")
        assert [i["id"] for i in page["items"]] == [2, 1]
        assert page["items"][1]["tribunal_origem"] == "TJSP"
        with pytest.raises(ValidationError):
            InboxManager(fake_sb).list_pending("emails")

    def test_link_requires_processo(self, fake_sb, pending):
        inbox = InboxManager(fake_sb)
        with pytest.raises(NotFoundError):
            inbox.link("publicacoes", 1, CNJ)
        with pytest.raises(ValidationError):
            inbox.link("publicacoes", 1, "123")

    def test_link_creates_processo_and_notifies(self, fake_sb, pending):
        fake_sb.seed("advogados", [{"oab": "SP123456", "nome": "Dra. Ana"}], schema="public")
        inbox = InboxManager(fake_sb)
        ProcessoManager(fake_sb).create({"numero_cnj": CNJ})
        ProcessoManager(fake_sb).link_advogado(CNJ, "SP123456")

        result = inbox.link("publicacoes", 1, "00012345620248260100")
        assert result["numero_cnj"] == CNJ
        assert result["notified"] == 1
        notification = fake_sb.rows("notifications", schema="public")[0]
        assert notification["oab"] == "SP123456"
        assert notification["type"] == "prazo"
        assert notification["link"] == f"/processos/{CNJ}"

    def test_link_with_create_processo(self, fake_sb, pending):
        result = InboxManager(fake_sb).link("publicacoes", 2, CNJ, create_processo=True)
        assert result["notified"] == 0
        assert ProcessoManager(fake_sb).get(CNJ)["numero_cnj"] == CNJ

    def test_bulk_link_collects_failures(self, fake_sb, pending):
        ProcessoManager(fake_sb).create({"numero_cnj": CNJ})
        result = InboxManager(fake_sb).bulk_link("publicacoes", [1, 99], CNJ)
        assert result["linked"] == [1]
        assert result["failed"] == [{"id": 99, "error": "Item não encontrado"}]

    def test_stats(self, fake_sb, pending):
        fake_sb.seed("movimentacoes", [{"numero_cnj": None, "data": {"texto": "Conclusos"}}], schema="public")
        stats = InboxManager(fake_sb).stats()
        assert stats["total"] == 3
        assert stats["by_kind"] == {"publicacoes": 2, "movimentacoes": 1}
        assert stats["by_priority"] == {"alta": 1, "media": 1, "baixa": 1}
