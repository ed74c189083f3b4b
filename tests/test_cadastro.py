# -*- coding: utf-8 -*-
"""
CONSULTAS CADASTRAIS E CIRCUIT BREAKER
=======================================
"""

import time
from unittest.mock import MagicMock

import httpx
import pytest

from legalflow.errors import ExternalServiceError, NotFoundError, ValidationError
from legalflow.external.cadastro import (
    CadastroClient,
    extract_endereco,
    extract_whatsapp,
    validar_documento,
)
from legalflow.external.circuit_breaker import CircuitBreaker, CircuitState

DIRECTDATA_OK = {
    "metaDados": {"mensagem": "Sucesso"},
    "retorno": {
        "nome": "MARIA SOUZA",
        "telefones": [
            {"telefoneComDDD": "(11) 3333-4444", "tipoTelefone": "FIXO"},
            {"telefoneComDDD": "(11) 99999-8888", "tipoTelefone": "TELEFONE MÓVEL", "whatsApp": True},
        ],
        "emails": [{"enderecoEmail": " Maria@Exemplo.com "}],
        "enderecos": [{"logradouro": "Av. Paulista", "numero": "1000", "cidade": "São Paulo",
                       "uf": "SP", "cep": "01310100"}],
    },
}


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(CadastroClient._get_json.retry, "sleep", lambda seconds: None)


def _client(handler, breaker=None, token="tok-123"):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return CadastroClient(http_client=http, breaker=breaker or CircuitBreaker(), directdata_token=token)


class TestExtractors:
    """Tests for the DirectData payload extractors."""

    def test_whatsapp_prefers_flagged_phone(self):
        assert extract_whatsapp(DIRECTDATA_OK["retorno"]) == "11999998888"

    def test_whatsapp_falls_back_to_celular(self):
        retorno = {"telefones": [{"telefoneComDDD": "11 98888-7777", "tipoTelefone": "Celular"}]}
        assert extract_whatsapp(retorno) == "11988887777"
        assert extract_whatsapp({"telefones": [{"telefoneComDDD": "1133334444", "tipoTelefone": "fixo"}]}) is None

    def test_endereco(self):
        endereco = extract_endereco(DIRECTDATA_OK["retorno"])
        assert endereco["cep"] == "01310-100"
        assert endereco["complemento"] == ""
        assert extract_endereco({}) is None

    def test_validar_documento(self):
        assert validar_documento("529.982.247-25") == {"valid": True, "tipo": "pf", "formatted": "529.982.247-25"}
        assert validar_documento("11222333000181")["formatted"] == "11.222.333/0001-81"
        assert validar_documento("123")["valid"] is False


class TestCadastroClient:
    """Tests for CadastroClient with a mocked HTTP transport."""

    def test_consultar_cpf(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=DIRECTDATA_OK)

        dados = _client(handler).consultar_cpf("529.982.247-25")
        assert seen["path"].endswith("/CadastroPessoaFisica")
        assert seen["params"] == {"CPF": "52998224725", "TOKEN": "tok-123"}
        assert dados["nome"] == "MARIA SOUZA"
        assert dados["email"] == "maria@exemplo.com"
        assert dados["whatsapp"] == "11999998888"

    def test_cpf_requires_eleven_digits(self):
        with pytest.raises(ValidationError):
            _client(lambda r: httpx.Response(200, json={})).consultar_cpf("123")

    def test_cpf_requires_token(self, monkeypatch):
        monkeypatch.delenv("DIRECTDATA_TOKEN", raising=False)
        handler = MagicMock()
        with pytest.raises(ExternalServiceError):
            _client(handler, token=None).consultar_cpf("52998224725")
        handler.assert_not_called()

    def test_cpf_unsuccessful_message(self):
        payload = {"metaDados": {"mensagem": "CPF não encontrado"}}
        with pytest.raises(ExternalServiceError) as exc:
            _client(lambda r: httpx.Response(200, json=payload)).consultar_cpf("52998224725")
        assert "CPF não encontrado" in str(exc.value)

    def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        with pytest.raises(ExternalServiceError):
            _client(handler).consultar_cpf("52998224725")
        assert len(calls) == 1

    def test_server_error_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=DIRECTDATA_OK)

        breaker = CircuitBreaker()
        assert _client(handler, breaker)._call("directdata", "https://api.test/x")["metaDados"]
        assert len(calls) == 3
        assert breaker.get_all_statuses()["directdata"]["state"] == "closed"

    def test_breaker_opens_after_failures(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400)

        client = _client(handler, CircuitBreaker(failure_threshold=2, recovery_timeout=60))
        for _ in range(2):
            with pytest.raises(ExternalServiceError):
                client.consultar_cpf("52998224725")
        with pytest.raises(ExternalServiceError):
            client.consultar_cpf("52998224725")
        assert len(calls) == 2

    def test_consultar_cep(self):
        def handler(request):
            assert request.url.path.endswith("/01310100/json/")
            return httpx.Response(200, json={"cep": "01310-100", "logradouro": "Avenida Paulista",
                                             "bairro": "Bela Vista", "localidade": "São Paulo", "uf": "SP"})

        cep = _client(handler).consultar_cep("01310-100")
        assert cep["cidade"] == "São Paulo"
        assert cep["complemento"] == ""

    def test_cep_not_found(self):
        with pytest.raises(NotFoundError):
            _client(lambda r: httpx.Response(200, json={"erro": True})).consultar_cep("99999999")
        with pytest.raises(ValidationError):
            _client(lambda r: httpx.Response(200, json={})).consultar_cep("123")


class TestCircuitBreaker:
    """Tests for CircuitBreaker state transitions."""

    def test_opens_at_threshold(self):
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        for _ in range(2):
            breaker.record_failure("viacep", "timeout")
        assert breaker.can_call("viacep")
        breaker.record_failure("viacep", "timeout")
        assert not breaker.can_call("viacep")
        with pytest.raises(ExternalServiceError):
            breaker.ensure_can_call("viacep")

    def test_providers_are_independent(self):
        breaker = CircuitBreaker(failure_threshold=1)
        breaker.record_failure("viacep")
        assert breaker.can_call("directdata")

    def test_half_open_after_timeout(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure("webhook", "HTTP 500")
        assert breaker.can_call("webhook")
        assert breaker.get_all_statuses()["webhook"]["state"] == CircuitState.HALF_OPEN.value

        breaker.record_failure("webhook", "HTTP 500")
        assert breaker.get_all_statuses()["webhook"]["state"] == "open"

        assert breaker.can_call("webhook")
        breaker.record_success("webhook")
        status = breaker.get_all_statuses()["webhook"]
        assert status["state"] == "closed"
        assert status["failure_count"] == 0

    def test_reset(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        breaker.record_failure("viacep", "boom")
        breaker.reset("viacep")
        assert breaker.can_call("viacep")
        assert breaker.get_all_statuses()["viacep"]["last_error"] == ""

    def test_redis_state_is_read_and_written(self):
        redis_client = MagicMock()
        redis_client.hgetall.return_value = {
            b"state": b"open",
            b"failure_count": b"5",
            b"last_failure_time": str(time.time()).encode(),
            b"last_success_time": b"0",
            b"last_error": b"HTTP 500",
        }
        breaker = CircuitBreaker(recovery_timeout=60, redis_client=redis_client)
        assert not breaker.can_call("directdata")

        breaker.record_failure("directdata", "HTTP 502")
        mapping = redis_client.hset.call_args.kwargs["mapping"]
        assert mapping["failure_count"] == "6"
        assert mapping["last_error"] == "HTTP 502"
        redis_client.expire.assert_called_with("legalflow:cb:directdata", 600)

    def test_redis_failure_falls_back_to_memory(self):
        redis_client = MagicMock()
        redis_client.hgetall.side_effect = ConnectionError("redis down")
        redis_client.hset.side_effect = ConnectionError("redis down")
        breaker = CircuitBreaker(failure_threshold=1, redis_client=redis_client)
        breaker.record_failure("viacep")
        assert not breaker.can_call("viacep")
