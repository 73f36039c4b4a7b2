# Overview: Pytest coverage for conversational turns end to end (oracle faked).

"""
Turn Service Tests

Each test drives handle_turn the way the conversation route does: the
context returned by one turn is passed into the next. The oracle is a
FakeOracle returning canned extraction JSON.
"""

import json
from datetime import timedelta

import pytest

from charla.errors import OracleUnavailable
from charla.models import ProductPrice, Sale, SaleLine, SalePayment
from charla.services import price_service, sales_service
from charla.services.conversation_state import ConversationContext
from charla.services.extraction_validator import validate_extraction
from charla.services.turn_service import TurnSettings, handle_turn
from conftest import NOW, FakeOracle, sale_reply


SETTINGS = TurnSettings(window=10, disambiguation_ttl=600, generate_replies=False)


def _turn(tenant, utterance, ctx=None, oracle=None, now=NOW, settings=SETTINGS):
    return handle_turn(tenant.id, utterance, ctx, oracle=oracle or FakeOracle(), now=now, settings=settings)


def _create(tenant, *items_total, now=NOW):
    result = validate_extraction(sale_reply(*items_total))
    return sales_service.create_sale(tenant.id, result.sale, now=now).sale


def _persisted_rows(db_session):
    return tuple(
        db_session.query(model).count()
        for model in (Sale, SaleLine, SalePayment, ProductPrice)
    )


class TestSaleCreation:

    def test_sale_with_price_change(self, db_session, tenant_a, payment_methods, empanadas):
        oracle = FakeOracle(
            sale_reply([("empanadas", 3, 300)], 900, payments=[("MercadoPago", 900)])
        )
        result = _turn(tenant_a, "Vendí 3 empanadas a $300 cada una, pagaron con MercadoPago", oracle=oracle)

        ack = result.acknowledgment
        assert ack["kind"] == "sale_created"
        sale = ack["sale"]
        assert sale["total_cents"] == 90000
        assert len(sale["lines"]) == 1
        assert sale["lines"][0]["quantity"] == "3"
        assert sale["lines"][0]["unit_price_cents"] == 30000
        assert [(p["payment_method"], p["amount_cents"]) for p in sale["payments"]] == [("MercadoPago", 90000)]
        assert ack["price_changes"] == [{
            "product_id": empanadas.id,
            "product_name": "Empanadas",
            "previous_price_cents": 25000,
            "new_price_cents": 30000,
        }]

        history = price_service.get_price_history(empanadas.id)
        assert [(e.unit_price_cents, e.valid_to) for e in history] == [(30000, None), (25000, NOW)]

        assert result.context.last_sale_id == sale["id"]
        assert result.context.messages[-1] == {
            "role": "user",
            "content": "Vendí 3 empanadas a $300 cada una, pagaron con MercadoPago",
        }
        assert "Empanadas" in oracle.prompts[0]

    def test_split_payment_half_cash_half_qr(self, db_session, tenant_a, payment_methods):
        oracle = FakeOracle(
            sale_reply([("torta", 1, 100)], 100, payments=[("Efectivo", 50), ("QR", 50)])
        )
        result = _turn(tenant_a, "vendí una torta, pagaron $100, mitad efectivo mitad QR", oracle=oracle)

        payments = result.acknowledgment["sale"]["payments"]
        assert [(p["payment_method"], p["amount_cents"]) for p in payments] == [
            ("Efectivo", 5000),
            ("Billetera Digital", 5000),
        ]

    def test_total_mismatch_rejected_and_nothing_persisted(self, db_session, tenant_a, payment_methods):
        before = _persisted_rows(db_session)
        oracle = FakeOracle(sale_reply([("pan", 1, 100), ("leche", 1, 40)], 150))

        result = _turn(tenant_a, "vendí pan y leche por 150", oracle=oracle)

        ack = result.acknowledgment
        assert ack["kind"] == "no_transaction"
        assert ack["code"] == "extraction_rejected"
        assert ack["message"] == "Invalid total amount"
        assert ack["needs_clarification"] is True
        assert _persisted_rows(db_session) == before
        assert result.context.last_sale_id is None

    @pytest.mark.parametrize("amount", [10 ** 20, 10 ** 30])
    def test_oversized_amount_rejected_and_nothing_persisted(self, db_session, tenant_a, payment_methods, amount):
        before = _persisted_rows(db_session)
        oracle = FakeOracle(sale_reply([("pan", 1, amount)], amount))

        result = _turn(tenant_a, "vendí un pan carísimo", oracle=oracle)

        ack = result.acknowledgment
        assert ack["kind"] == "no_transaction"
        assert ack["code"] == "extraction_rejected"
        assert ack["message"] == "Invalid item data"
        assert _persisted_rows(db_session) == before

    def test_question_is_not_a_sale(self, db_session, tenant_a, payment_methods):
        oracle = FakeOracle({"hasSaleData": False, "hasExpenseData": False})
        result = _turn(tenant_a, "¿cómo registro una venta?", oracle=oracle)
        assert result.acknowledgment["kind"] == "no_transaction"
        assert result.acknowledgment["message"] == "No sale data"

    def test_unparseable_oracle_reply(self, db_session, tenant_a, payment_methods):
        before = _persisted_rows(db_session)
        result = _turn(tenant_a, "vendí algo", oracle=FakeOracle("Perfecto, anotado!"))
        assert result.acknowledgment["kind"] == "no_transaction"
        assert result.acknowledgment["code"] == "oracle_parse_failure"
        assert _persisted_rows(db_session) == before

    def test_oracle_down(self, db_session, tenant_a, payment_methods):
        oracle = FakeOracle(OracleUnavailable("Language model request failed"))
        result = _turn(tenant_a, "vendí algo", oracle=oracle)
        assert result.acknowledgment["kind"] == "no_transaction"
        assert result.acknowledgment["code"] == "oracle_unavailable"
        assert result.acknowledgment["needs_clarification"] is False

    def test_unresolved_payment_method(self, db_session, tenant_a, payment_methods):
        before = _persisted_rows(db_session)
        oracle = FakeOracle(sale_reply([("pan", 1, 100)], 100, payments=[("cheque", 100)]))

        result = _turn(tenant_a, "vendí pan, pagó con cheque", oracle=oracle)

        ack = result.acknowledgment
        assert ack["kind"] == "error"
        assert ack["code"] == "payment_method_unresolved"
        assert ack["details"]["payment_methods"] == ["cheque"]
        assert _persisted_rows(db_session) == before

    def test_expense_is_reported_not_persisted(self, db_session, tenant_a, payment_methods):
        reply = sale_reply([("pan", 1, 100)], 100)
        reply["hasExpenseData"] = True
        reply["expense"] = {"description": "harina", "amount": 5000, "category": "insumos"}

        result = _turn(tenant_a, "vendí pan y compré harina", oracle=FakeOracle(reply))
        assert result.acknowledgment["kind"] == "sale_created"
        assert result.acknowledgment["expense"]["description"] == "harina"

    def test_oracle_is_a_plain_callable(self, db_session, tenant_a, payment_methods):
        reply = json.dumps(sale_reply([("pan", 1, 100)], 100))
        result = handle_turn(tenant_a.id, "vendí pan", oracle=lambda prompt: reply, now=NOW, settings=SETTINGS)
        assert result.acknowledgment["kind"] == "sale_created"


class TestCancellation:

    def test_cancel_last_sale(self, db_session, tenant_a, payment_methods):
        sale = _create(tenant_a, [("pan", 1, 100)], 100)
        ctx = ConversationContext(last_sale_id=sale.id)

        oracle = FakeOracle()
        result = _turn(tenant_a, "anulá la venta", ctx, oracle=oracle)

        assert result.acknowledgment["kind"] == "sale_cancelled"
        assert result.acknowledgment["sale"]["id"] == sale.id
        assert result.context.last_sale_id is None
        assert db_session.get(Sale, sale.id).is_voided is True
        assert oracle.prompts == []

    def test_cancel_by_explicit_id(self, db_session, tenant_a, payment_methods):
        sale = _create(tenant_a, [("pan", 1, 100)], 100)
        result = _turn(tenant_a, f"cancelá la venta #{sale.id}")
        assert result.acknowledgment["kind"] == "sale_cancelled"

    def test_cancel_twice(self, db_session, tenant_a, payment_methods):
        sale = _create(tenant_a, [("pan", 1, 100)], 100)

        first = _turn(tenant_a, f"anulá la venta #{sale.id}")
        second = _turn(tenant_a, f"anulá la venta #{sale.id}", first.context)

        assert first.acknowledgment["kind"] == "sale_cancelled"
        assert second.acknowledgment["kind"] == "already_cancelled"
        assert second.acknowledgment["code"] == "already_cancelled"
        assert db_session.get(Sale, sale.id).is_voided is True

    def test_cancel_other_tenants_sale_is_not_found(self, db_session, tenant_a, tenant_b, payment_methods):
        sale = _create(tenant_a, [("pan", 1, 100)], 100)
        result = _turn(tenant_b, f"anulá la venta #{sale.id}")
        assert result.acknowledgment["kind"] == "not_found"
        assert db_session.get(Sale, sale.id).is_voided is False

    def test_disambiguation_then_ordinal(self, db_session, tenant_a, payment_methods):
        first = _create(tenant_a, [("pan", 1, 100)], 100)
        second = _create(tenant_a, [("leche", 2, 150)], 300)
        third = _create(tenant_a, [("café", 1, 200)], 200)

        offered = _turn(tenant_a, "eliminá una venta")
        ack = offered.acknowledgment
        assert ack["kind"] == "disambiguation"
        assert ack["action"] == "cancel"
        assert [o["sale_id"] for o in ack["options"]] == [first.id, second.id, third.id]
        assert ack["options"][1]["items"] == ["leche"]
        assert offered.context.pending_disambiguation.ordinals == {1: first.id, 2: second.id, 3: third.id}

        picked = _turn(tenant_a, "la 2", offered.context, now=NOW + timedelta(seconds=30))
        assert picked.acknowledgment["kind"] == "sale_cancelled"
        assert picked.acknowledgment["sale"]["id"] == second.id
        assert picked.context.pending_disambiguation is None
        assert db_session.get(Sale, second.id).is_voided is True
        assert db_session.get(Sale, first.id).is_voided is False

    def test_invalid_ordinal_reports_error_and_clears_list(self, db_session, tenant_a, payment_methods):
        _create(tenant_a, [("pan", 1, 100)], 100)
        _create(tenant_a, [("leche", 1, 100)], 100)

        offered = _turn(tenant_a, "eliminá una venta")
        picked = _turn(tenant_a, "la 5", offered.context)

        assert picked.acknowledgment["kind"] == "invalid_ordinal"
        assert picked.acknowledgment["available"] == [1, 2]
        assert picked.acknowledgment["expired"] is False
        assert picked.context.pending_disambiguation is None
        assert db_session.query(Sale).filter_by(is_voided=True).count() == 0

    def test_expired_list(self, db_session, tenant_a, payment_methods):
        _create(tenant_a, [("pan", 1, 100)], 100)
        offered = _turn(tenant_a, "eliminá una venta")

        picked = _turn(tenant_a, "la 1", offered.context, now=NOW + timedelta(seconds=601))
        assert picked.acknowledgment["kind"] == "invalid_ordinal"
        assert picked.acknowledgment["expired"] is True
        assert db_session.query(Sale).filter_by(is_voided=True).count() == 0

    def test_no_sales_today_asks_for_clarification(self, db_session, tenant_a, payment_methods):
        result = _turn(tenant_a, "eliminá una venta")
        assert result.acknowledgment["kind"] == "clarification_needed"
        assert result.acknowledgment["code"] == "ambiguous_reference"
        assert result.context.pending_disambiguation is None

    def test_new_sale_while_list_pending(self, db_session, tenant_a, payment_methods):
        _create(tenant_a, [("pan", 1, 100)], 100)
        offered = _turn(tenant_a, "eliminá una venta")

        oracle = FakeOracle(sale_reply([("empanadas", 2, 300)], 600))
        result = _turn(tenant_a, "vendí 2 empanadas a 300", offered.context, oracle=oracle)

        assert result.acknowledgment["kind"] == "sale_created"
        assert result.context.pending_disambiguation is None
        assert result.context.last_sale_id == result.acknowledgment["sale"]["id"]

    def test_order_without_sale_verb_while_list_pending(self, db_session, tenant_a, payment_methods):
        _create(tenant_a, [("pan", 1, 100)], 100)
        _create(tenant_a, [("leche", 1, 100)], 100)
        offered = _turn(tenant_a, "eliminá una venta")

        oracle = FakeOracle(sale_reply([("cafés con leche", 2, 300)], 600, payments=[("Efectivo", 600)]))
        result = _turn(tenant_a, "2 cafés con leche, en efectivo", offered.context, oracle=oracle)

        assert result.acknowledgment["kind"] == "sale_created"
        assert len(oracle.prompts) == 1
        assert result.context.pending_disambiguation is None
        assert db_session.query(Sale).filter_by(is_voided=True).count() == 0

    def test_unrelated_utterance_abandons_list(self, db_session, tenant_a, payment_methods):
        _create(tenant_a, [("pan", 1, 100)], 100)
        offered = _turn(tenant_a, "eliminá una venta")

        result = _turn(tenant_a, "hola, ¿cómo va?", offered.context)
        assert result.acknowledgment["kind"] == "no_transaction"
        assert result.context.pending_disambiguation is None

        later = _turn(tenant_a, "la 1", result.context)
        assert later.acknowledgment["kind"] == "no_transaction"
        assert db_session.query(Sale).filter_by(is_voided=True).count() == 0

    def test_cancel_verb_with_ordinal_picks(self, db_session, tenant_a, payment_methods):
        _create(tenant_a, [("pan", 1, 100)], 100)
        second = _create(tenant_a, [("leche", 1, 100)], 100)
        offered = _turn(tenant_a, "eliminá una venta")

        picked = _turn(tenant_a, "anulá la segunda", offered.context)
        assert picked.acknowledgment["kind"] == "sale_cancelled"
        assert picked.acknowledgment["sale"]["id"] == second.id


class TestEdits:

    def test_edit_total_of_last_sale(self, db_session, tenant_a, payment_methods):
        sale = _create(tenant_a, [("pan", 1, 100)], 100)
        result = _turn(tenant_a, "cambiá el total a 90", ConversationContext(last_sale_id=sale.id))

        ack = result.acknowledgment
        assert ack["kind"] == "sale_updated"
        assert ack["updated_fields"] == ["total_cents"]
        assert ack["sale"]["total_cents"] == 9000
        assert result.context.last_sale_id == sale.id

    def test_edit_customer_through_disambiguation(self, db_session, tenant_a, payment_methods):
        _create(tenant_a, [("pan", 1, 100)], 100)
        target = _create(tenant_a, [("leche", 1, 100)], 100)

        offered = _turn(tenant_a, "en una venta el cliente era Marta")
        assert offered.acknowledgment["kind"] == "disambiguation"
        assert offered.acknowledgment["action"] == "edit"

        picked = _turn(tenant_a, "la segunda", offered.context)
        assert picked.acknowledgment["kind"] == "sale_updated"
        assert picked.acknowledgment["sale"]["id"] == target.id
        assert picked.acknowledgment["sale"]["customer_name"] == "Marta"

    def test_edit_voided_sale_rejected(self, db_session, tenant_a, payment_methods):
        sale = _create(tenant_a, [("pan", 1, 100)], 100)
        sales_service.cancel_sale(tenant_a.id, sale.id, now=NOW)

        result = _turn(tenant_a, f"cambiá el total de la venta #{sale.id} a 50")
        assert result.acknowledgment["kind"] == "already_cancelled"
        assert result.acknowledgment["code"] == "sale_voided"
        assert db_session.get(Sale, sale.id).total_cents == 10000

    def test_oversized_spoken_total_is_not_an_edit(self, db_session, tenant_a, payment_methods):
        sale = _create(tenant_a, [("pan", 1, 100)], 100)
        oracle = FakeOracle()
        result = _turn(
            tenant_a,
            "cambiá el total a 99999999999999999999999999999",
            ConversationContext(last_sale_id=sale.id),
            oracle=oracle,
        )

        assert result.acknowledgment["kind"] == "no_transaction"
        assert len(oracle.prompts) == 1
        assert db_session.get(Sale, sale.id).total_cents == 10000


class TestReplies:

    def test_reply_generated_and_appended(self, db_session, tenant_a, payment_methods):
        oracle = FakeOracle(sale_reply([("pan", 1, 100)], 100), chat_reply="¡Listo! Venta #1 por $100.")
        settings = TurnSettings(window=10, disambiguation_ttl=600, generate_replies=True)

        result = _turn(tenant_a, "vendí pan a 100", oracle=oracle, settings=settings)

        assert result.reply == "¡Listo! Venta #1 por $100."
        assert result.context.messages[-1] == {"role": "assistant", "content": "¡Listo! Venta #1 por $100."}
        messages = oracle.chat_calls[0]
        assert messages[0]["role"] == "system"
        assert {"role": "user", "content": "vendí pan a 100"} in messages
        assert "sale_created" in messages[-1]["content"]

    def test_reply_failure_keeps_acknowledgment(self, db_session, tenant_a, payment_methods):
        class DownChat(FakeOracle):
            def chat(self, messages):
                raise OracleUnavailable("timeout")

        oracle = DownChat(sale_reply([("pan", 1, 100)], 100))
        settings = TurnSettings(window=10, disambiguation_ttl=600, generate_replies=True)

        result = _turn(tenant_a, "vendí pan a 100", oracle=oracle, settings=settings)
        assert result.acknowledgment["kind"] == "sale_created"
        assert result.reply is None
        assert result.context.messages[-1]["role"] == "user"


def test_turn_result_serializes(db_session, tenant_a, payment_methods):
    result = _turn(tenant_a, "vendí pan", oracle=FakeOracle(sale_reply([("pan", 1, 100)], 100)))
    data = result.to_dict()
    assert data["acknowledgment"]["kind"] == "sale_created"
    assert data["context"]["last_sale_id"] == data["acknowledgment"]["sale"]["id"]
    assert ConversationContext.from_dict(data["context"]) == result.context


@pytest.mark.parametrize("utterance", ["la 2", "2"])
def test_ordinal_without_pending_list_goes_to_oracle(db_session, tenant_a, payment_methods, utterance):
    oracle = FakeOracle()
    result = _turn(tenant_a, utterance, oracle=oracle)
    assert result.acknowledgment["kind"] == "no_transaction"
    assert len(oracle.prompts) == 1
