# -*- coding: utf-8 -*-
"""
PROCESSOS AND CLIENTES
=======================================
"""

from unittest.mock import MagicMock

import pytest

from legalflow.clientes import ClienteManager, validate_cliente_fields
from legalflow.errors import ConflictError, ExternalServiceError, NotFoundError, ValidationError
from legalflow.financeiro import FinanceiroManager
from legalflow.processos import NAO_INFORMADO, ProcessoManager, extract_capa, normalize_tags

CNJ = "0001234-56.2024.8.26.0100"
CNJ_DIGITS = "00012345620248260100"
OTHER_CNJ = "1234567-89.2023.8.26.0001"
VALID_CPF = "52998224725"


class TestCapa:
    """Tests for extract_capa fallbacks."""

    def test_empty_payload(self):
        capa = extract_capa(None)
        assert capa["classe"] == NAO_INFORMADO
        assert capa["audiencias"] == []
        assert capa["valor_causa"] is None

    def test_primary_keys(self):
        capa = extract_capa({
            "classe": {"nome": "Procedimento Comum", "area": "Cível"},
            "assunto": [{"nome": "Indenização"}],
            "orgaoJulgador": {"nome": "2ª Vara Cível"},
            "valorCausa": 50000,
            "situacao": "Em andamento",
        })
        assert capa["area"] == "Cível"
        assert capa["classe"] == "Procedimento Comum"
        assert capa["assunto"] == "Indenização"
        assert capa["orgao_julgador"] == "2ª Vara Cível"
        assert capa["valor_causa"] == 50000

    def test_alternative_keys(self):
        capa = extract_capa({
            "classeProcessual": "Execução Fiscal",
            "assuntos": ["ICMS"],
            "varaDistribuicao": "Vara de Execuções Fiscais",
            "status": "Suspenso",
            "proximasAudiencias": [{"data": "2024-05-01"}],
        })
        assert capa["classe"] == "Execução Fiscal"
        assert capa["assunto"] == "ICMS"
        assert capa["orgao_julgador"] == "Vara de Execuções Fiscais"
        assert capa["situacao"] == "Suspenso"
        assert len(capa["audiencias"]) == 1
        assert capa["area"] == NAO_INFORMADO

    def test_normalize_tags(self):
        assert normalize_tags([" Urgente", "urgente", "", "Recurso"]) == ["urgente", "recurso"]
        assert normalize_tags(None) == []


class TestProcessoManager:
    """Tests for ProcessoManager against the in-memory Supabase."""

    def test_create_normalizes(self, fake_sb):
        processo = ProcessoManager(fake_sb).create({
            "numero_cnj": CNJ_DIGITS, "tribunal_sigla": "tjsp", "tags": ["Urgente", "urgente"],
        })
        assert processo["numero_cnj"] == CNJ
        assert processo["tribunal_sigla"] == "TJSP"
        assert processo["tags"] == ["urgente"]
        assert processo["deleted_at"] is None

    def test_create_invalid(self, fake_sb):
        manager = ProcessoManager(fake_sb)
        with pytest.raises(ValidationError):
            manager.create({"numero_cnj": "123"})
        with pytest.raises(ValidationError) as exc:
            manager.create({"numero_cnj": CNJ, "tribunal_sigla": "X" * 11})
        assert exc.value.errors[0]["code"] == "MAX_LENGTH"

    def test_duplicate_conflict(self, fake_sb):
        manager = ProcessoManager(fake_sb)
        manager.create({"numero_cnj": CNJ})
        with pytest.raises(ConflictError):
            manager.create({"numero_cnj": CNJ_DIGITS})

    def test_soft_delete_and_reactivate(self, fake_sb):
        manager = ProcessoManager(fake_sb)
        manager.create({"numero_cnj": CNJ, "titulo_polo_ativo": "Antigo"})
        manager.delete(CNJ)
        with pytest.raises(NotFoundError):
            manager.get(CNJ)
        assert fake_sb.rows("processos", schema="public")[0]["deleted_at"]

        revived = manager.create({"numero_cnj": CNJ, "titulo_polo_ativo": "Novo"})
        assert revived["titulo_polo_ativo"] == "Novo"
        assert len(fake_sb.rows("processos", schema="public")) == 1
        assert manager.get(CNJ)["deleted_at"] is None

    def test_list_excludes_deleted_and_searches(self, fake_sb):
        manager = ProcessoManager(fake_sb)
        manager.create({"numero_cnj": CNJ, "titulo_polo_ativo": "Maria Souza", "tags": ["trabalhista"]})
        manager.create({"numero_cnj": OTHER_CNJ, "titulo_polo_ativo": "Banco X"})
        assert manager.list_processos()["pagination"]["total"] == 2
        assert manager.list_processos(query="maria")["items"][0]["numero_cnj"] == CNJ
        assert manager.list_processos(tag="Trabalhista")["pagination"]["total"] == 1
        manager.delete(OTHER_CNJ)
        assert manager.list_processos()["pagination"]["total"] == 1

    def test_tags(self, fake_sb):
        manager = ProcessoManager(fake_sb)
        manager.create({"numero_cnj": CNJ, "tags": ["a"]})
        assert manager.add_tag(CNJ, " B ") == ["a", "b"]
        assert manager.remove_tag(CNJ, "A") == ["b"]

    def test_link_cliente(self, fake_sb):
        manager = ProcessoManager(fake_sb)
        manager.create({"numero_cnj": CNJ})
        with pytest.raises(ValidationError):
            manager.link_cliente(CNJ, "123")
        with pytest.raises(NotFoundError):
            manager.link_cliente(CNJ, VALID_CPF)
        fake_sb.seed("clientes", [{"cpfcnpj": VALID_CPF, "nome": "Maria"}], schema="public")
        first = manager.link_cliente(CNJ, "529.982.247-25")
        again = manager.link_cliente(CNJ, VALID_CPF)
        assert first["id"] == again["id"]
        assert [c["nome"] for c in manager.clientes(CNJ)] == ["Maria"]
        manager.unlink_cliente(CNJ, VALID_CPF)
        assert manager.clientes(CNJ) == []

    def test_link_advogado(self, fake_sb):
        manager = ProcessoManager(fake_sb)
        manager.create({"numero_cnj": CNJ})
        with pytest.raises(NotFoundError):
            manager.link_advogado(CNJ, "SP123456")
        fake_sb.seed("advogados", [{"oab": "SP123456", "nome": "Dra. Ana"}], schema="public")
        manager.link_advogado(CNJ, "SP123456")
        assert manager.advogados(CNJ)[0]["nome"] == "Dra. Ana"

    def test_overview_and_timeline(self, fake_sb):
        manager = ProcessoManager(fake_sb)
        manager.create({"numero_cnj": CNJ, "data": {"classe": {"nome": "Procedimento Comum"}}})
        fake_sb.seed("movimentacoes", [
            {"numero_cnj": CNJ, "data_movimentacao": "2024-03-01T10:00:00+00:00", "data": {"texto": "Conclusos"}},
            {"numero_cnj": CNJ, "data_movimentacao": "2024-03-05T10:00:00+00:00", "data": {"texto": "Sentença"}},
        ], schema="public")
        fake_sb.seed("publicacoes", [
            {"numero_cnj": CNJ, "data_publicacao": "2024-03-03T10:00:00+00:00", "data": {"resumo": "Intimação"}},
        ], schema="public")
        fake_sb.seed("eventos_agenda", [
            {"numero_cnj": CNJ, "title": "Audiência", "starts_at": "2024-04-01T13:00:00+00:00"},
        ])

        overview = manager.overview(CNJ)
        assert overview["capa"]["classe"] == "Procedimento Comum"
        assert overview["contagens"]["movimentacoes"] == 2
        assert overview["contagens"]["publicacoes"] == 1
        assert overview["contagens"]["documentos"] == 0
        assert overview["ultima_movimentacao"]["data"]["texto"] == "Sentença"

        timeline = manager.timeline(CNJ)
        assert [(i["kind"], i["description"] or i["title"]) for i in timeline] == [
            ("evento", "Audiência"),
            ("movimentacao", "Sentença"),
            ("publicacao", "Intimação"),
            ("movimentacao", "Conclusos"),
        ]
        assert len(manager.timeline(CNJ, limit=2)) == 2

    def test_movimentacoes_paginated(self, fake_sb):
        manager = ProcessoManager(fake_sb)
        manager.create({"numero_cnj": CNJ})
        fake_sb.seed("movimentacoes", [
            {"numero_cnj": CNJ, "data_movimentacao": f"2024-03-{d:02d}T10:00:00+00:00"} for d in range(1, 6)
        ], schema="public")
        page = manager.movimentacoes(CNJ, page=2, limit=2)
        assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "totalPages": 3}
        assert [m["data_movimentacao"][:10] for m in page["items"]] == ["2024-03-03", "2024-03-02"]


class TestClienteManager:
    """Tests for ClienteManager."""

    def test_field_validation(self):
        errors = validate_cliente_fields({"nome": "A", "email": "x", "endereco": {"cep": "12"}})
        assert {e["field"] for e in errors} == {"nome", "email", "endereco.cep"}
        assert validate_cliente_fields({"email": "a@b.com"}, partial=True) == []

    def test_create(self, fake_sb):
        cliente = ClienteManager(fake_sb).create({
            "cpfcnpj": "529.982.247-25", "nome": " Maria Souza ", "email": " Maria@Exemplo.COM ",
            "whatsapp": "+55 (11) 99999-8888",
        })
        assert cliente["cpfcnpj"] == VALID_CPF
        assert cliente["tipo"] == "pf"
        assert cliente["nome"] == "Maria Souza"
        assert cliente["email"] == "maria@exemplo.com"
        assert cliente["whatsapp"] == "+5511999998888"

    def test_create_rejects_invalid_and_duplicate(self, fake_sb):
        manager = ClienteManager(fake_sb)
        with pytest.raises(ValidationError):
            manager.create({"cpfcnpj": "529.982.247-24", "nome": "Maria"})
        manager.create({"cpfcnpj": VALID_CPF, "nome": "Maria"})
        with pytest.raises(ConflictError):
            manager.create({"cpfcnpj": VALID_CPF, "nome": "Maria"})

    def test_cnpj_is_pj(self, fake_sb):
        assert ClienteManager(fake_sb).create({"cpfcnpj": "11222333000181", "nome": "Empresa"})["tipo"] == "pj"

    def test_enrichment_fills_missing_fields(self, fake_sb):
        cadastro = MagicMock()
        cadastro.consultar_cpf.return_value = {
            "whatsapp": "+5511988887777", "email": "maria@directd.com",
            "endereco": {"cep": "01310-100", "logradouro": "Av. Paulista"},
        }
        cliente = ClienteManager(fake_sb, cadastro=cadastro).create(
            {"cpfcnpj": VALID_CPF, "nome": "Maria", "email": "propria@exemplo.com"}, enrich=True)
        assert cliente["email"] == "propria@exemplo.com"
        assert cliente["whatsapp"] == "+5511988887777"
        assert cliente["endereco"]["logradouro"] == "Av. Paulista"
        cadastro.consultar_cep.assert_not_called()

    def test_enrichment_failure_is_ignored(self, fake_sb):
        cadastro = MagicMock()
        cadastro.consultar_cpf.side_effect = ExternalServiceError("directdata", "fora do ar")
        cadastro.consultar_cep.return_value = {"cep": "01310-100", "logradouro": "Av. Paulista",
                                               "bairro": "Bela Vista", "cidade": "São Paulo", "uf": "SP"}
        cliente = ClienteManager(fake_sb, cadastro=cadastro).create(
            {"cpfcnpj": VALID_CPF, "nome": "Maria", "endereco": {"cep": "01310100", "numero": "1000"}},
            enrich=True)
        assert cliente["whatsapp"] is None
        assert cliente["endereco"]["cidade"] == "São Paulo"
        assert cliente["endereco"]["numero"] == "1000"

    def test_update(self, fake_sb):
        manager = ClienteManager(fake_sb)
        manager.create({"cpfcnpj": VALID_CPF, "nome": "Maria"})
        updated = manager.update(VALID_CPF, {"email": "NOVO@exemplo.com", "cpfcnpj": "outro"})
        assert updated["email"] == "novo@exemplo.com"
        assert updated["cpfcnpj"] == VALID_CPF
        with pytest.raises(ValidationError):
            manager.update(VALID_CPF, {"nome": ""})
        with pytest.raises(NotFoundError):
            manager.update("11222333000181", {"nome": "x"})

    def test_list_filters(self, fake_sb):
        manager = ClienteManager(fake_sb)
        manager.create({"cpfcnpj": VALID_CPF, "nome": "Maria", "whatsapp": "+5511999998888"})
        manager.create({"cpfcnpj": "11222333000181", "nome": "Empresa"})
        assert manager.list_clientes()["pagination"]["total"] == 2
        assert manager.list_clientes(has_whatsapp=True)["items"][0]["nome"] == "Maria"
        assert manager.list_clientes(has_whatsapp=False)["items"][0]["nome"] == "Empresa"
        assert manager.list_clientes(query="empr")["pagination"]["total"] == 1

    def test_delete_guards(self, fake_sb):
        manager = ClienteManager(fake_sb)
        manager.create({"cpfcnpj": VALID_CPF, "nome": "Maria"})
        fake_sb.seed("journey_instances", [{"cliente_cpfcnpj": VALID_CPF, "status": "ativo"}])
        with pytest.raises(ConflictError):
            manager.delete(VALID_CPF)
        fake_sb.tables[("legalflow", "journey_instances")][0]["status"] = "concluido"
        fake_sb.seed("planos_pagamento", [{"cliente_cpfcnpj": VALID_CPF, "status": "inadimplente"}])
        with pytest.raises(ConflictError):
            manager.delete(VALID_CPF)

    def test_delete_refused_with_paused_plano(self, fake_sb):
        manager = ClienteManager(fake_sb)
        manager.create({"cpfcnpj": VALID_CPF, "nome": "Maria"})
        financeiro = FinanceiroManager(fake_sb)
        plano = financeiro.create_plano({"cliente_cpfcnpj": VALID_CPF, "amount_total": 200, "installments": 2,
                                         "first_due_date": "2030-01-10"})
        financeiro.set_plano_status(plano["id"], "pausado")
        with pytest.raises(ConflictError) as exc:
            manager.delete(VALID_CPF)
        assert str(exc.value) == "Cliente possui planos de pagamento em aberto"
        assert len(fake_sb.rows("clientes", schema="public")) == 1

    def test_delete_removes_links(self, fake_sb):
        manager = ClienteManager(fake_sb)
        manager.create({"cpfcnpj": VALID_CPF, "nome": "Maria"})
        fake_sb.seed("clientes_processos", [{"cliente_cpfcnpj": VALID_CPF, "numero_cnj": CNJ}], schema="public")
        manager.delete(VALID_CPF)
        assert fake_sb.rows("clientes", schema="public") == []
        assert fake_sb.rows("clientes_processos", schema="public") == []

    def test_related_processos(self, fake_sb):
        manager = ClienteManager(fake_sb)
        manager.create({"cpfcnpj": VALID_CPF, "nome": "Maria"})
        processos = ProcessoManager(fake_sb)
        processos.create({"numero_cnj": CNJ})
        processos.create({"numero_cnj": OTHER_CNJ})
        processos.link_cliente(CNJ, VALID_CPF)
        processos.link_cliente(OTHER_CNJ, VALID_CPF)
        processos.delete(OTHER_CNJ)
        assert [p["numero_cnj"] for p in manager.processos(VALID_CPF)] == [CNJ]
