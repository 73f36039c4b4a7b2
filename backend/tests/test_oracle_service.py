# Overview: Pytest coverage for the oracle adapter (prompt building, reply parsing, client errors).

import json
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from charla.errors import OracleParseFailure, OracleUnavailable
from charla.services.catalog_service import CatalogSnapshot
from charla.services.oracle_service import OracleClient, extract, parse_extraction, strip_code_fences
from charla.services.prompts import build_extraction_prompt, format_money
from conftest import sale_reply


SNAPSHOT = CatalogSnapshot(
    products=[
        {"id": 1, "name": "Empanadas", "current_price_cents": 25000},
        {"id": 2, "name": "Gaseosa", "current_price_cents": None},
    ],
    payment_methods=[
        {"id": 1, "name": "Efectivo"},
        {"id": 2, "name": "Billetera Digital"},
    ],
)


class TestPrompt:

    def test_embeds_catalog_and_rules(self):
        prompt = build_extraction_prompt("vendí 3 empanadas", SNAPSHOT)
        assert "- Empanadas (precio actual: $250)" in prompt
        assert "- Gaseosa (precio actual: sin precio)" in prompt
        assert "- Billetera Digital" in prompt
        assert '"qr"' in prompt
        assert "mitad" in prompt
        assert 'Entrada del usuario: "vendí 3 empanadas"' in prompt

    def test_empty_catalog(self):
        prompt = build_extraction_prompt("hola", CatalogSnapshot())
        assert "(sin productos cargados)" in prompt
        assert "(sin métodos de pago)" in prompt

    def test_format_money(self):
        assert format_money(25000) == "$250"
        assert format_money(12345) == "$123.45"
        assert format_money(None) == "sin precio"


class TestParseExtraction:

    def test_plain_json(self):
        data = parse_extraction(json.dumps(sale_reply([("pan", 1, 100)], 100)))
        assert data["hasSaleData"] is True

    def test_code_fenced_json(self):
        text = "```json\n" + json.dumps({"hasSaleData": False}) + "\n```"
        assert parse_extraction(text) == {"hasSaleData": False}

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "Claro, registré la venta.",
        "[1, 2, 3]",
        '{"sale": {}}',
        '{"hasSaleData": "yes"}',
        '{"hasSaleData": true}',
        '{"hasSaleData": true, "sale": null}',
        '{"hasSaleData": false',
    ])
    def test_unparseable_replies(self, text):
        with pytest.raises(OracleParseFailure):
            parse_extraction(text)

    def test_strip_code_fences_leaves_plain_text(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


def test_extract_calls_oracle_once_with_prompt():
    prompts = []

    def complete(prompt):
        prompts.append(prompt)
        return json.dumps({"hasSaleData": False, "hasExpenseData": False})

    data = extract("¿cómo registro una venta?", SNAPSHOT, complete)
    assert data["hasSaleData"] is False
    assert len(prompts) == 1
    assert "Empanadas" in prompts[0]


def test_extract_propagates_parse_failure():
    with pytest.raises(OracleParseFailure):
        extract("vendí algo", SNAPSHOT, lambda prompt: "no sé")


class TestOracleClient:

    def test_missing_api_key(self):
        with pytest.raises(OracleUnavailable):
            OracleClient(api_key="")

    def test_from_config(self):
        client = OracleClient.from_config({
            "OPENAI_API_KEY": "sk-test",
            "OPENAI_MODEL": "gpt-4o",
            "EXTRACTION_TEMPERATURE": 0.0,
        })
        assert client.model == "gpt-4o"
        assert client.extraction_temperature == 0.0

    def _client_returning(self, create):
        client = OracleClient(api_key="sk-test")
        client._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        return client

    def test_complete_uses_extraction_settings(self):
        calls = []

        def create(**kwargs):
            calls.append(kwargs)
            message = SimpleNamespace(content='{"hasSaleData": false}')
            return SimpleNamespace(choices=[SimpleNamespace(message=message)])

        client = self._client_returning(create)
        assert client.complete("prompt") == '{"hasSaleData": false}'
        assert calls[0]["temperature"] == 0.1
        assert calls[0]["max_tokens"] == 800
        assert calls[0]["messages"] == [{"role": "user", "content": "prompt"}]

    def test_sdk_errors_become_oracle_unavailable(self):
        def create(**kwargs):
            raise OpenAIError("connection reset")

        client = self._client_returning(create)
        with pytest.raises(OracleUnavailable) as exc_info:
            client.chat([{"role": "user", "content": "hola"}])
        assert exc_info.value.details == {"error": "OpenAIError"}

    def test_no_choices(self):
        client = self._client_returning(lambda **kwargs: SimpleNamespace(choices=[]))
        with pytest.raises(OracleUnavailable):
            client.complete("prompt")
