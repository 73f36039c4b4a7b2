# Overview: Pytest coverage for cancel/edit command recognition.

import pytest

from charla.services.command_parser import (
    CANCEL,
    EDIT,
    explicit_sale_id,
    is_sale_statement,
    parse_amount_cents,
    parse_command,
    strip_cancel_verb,
)


@pytest.mark.parametrize("utterance", [
    "anulá la venta",
    "cancelá la última",
    "borrala",
    "eliminá esa venta",
    "delete the last sale",
])
def test_cancel_referring_to_last_sale(utterance):
    command = parse_command(utterance)
    assert command.action == CANCEL
    assert command.refers_to_last is True
    assert command.sale_id is None


@pytest.mark.parametrize("utterance", ["eliminá una venta", "delete a sale", "quiero anular"])
def test_ambiguous_cancel(utterance):
    command = parse_command(utterance)
    assert command.action == CANCEL
    assert command.refers_to_last is False
    assert command.sale_id is None


@pytest.mark.parametrize("utterance, sale_id", [
    ("anulá la venta #42", 42),
    ("cancelá la venta id 7", 7),
    ("void sale number 15", 15),
])
def test_cancel_with_explicit_id(utterance, sale_id):
    command = parse_command(utterance)
    assert command.action == CANCEL
    assert command.sale_id == sale_id


def test_edit_total():
    command = parse_command("cambiá el total a $1.500")
    assert command.action == EDIT
    assert command.fields == {"total_cents": 150000}
    assert command.refers_to_last is True


def test_edit_customer_keeps_spelling():
    command = parse_command("el cliente era Juan Pérez")
    assert command.action == EDIT
    assert command.fields == {"customer_name": "Juan Pérez"}


def test_edit_note():
    command = parse_command("nota: pasa a buscar a la tarde")
    assert command.action == EDIT
    assert command.fields == {"note": "pasa a buscar a la tarde"}


def test_mark_incomplete():
    command = parse_command("marcala como incompleta")
    assert command.fields == {"is_incomplete": True}


def test_edit_with_explicit_id():
    command = parse_command("cambiá el total de la venta #12 a 800")
    assert command.action == EDIT
    assert command.sale_id == 12
    assert command.fields == {"total_cents": 80000}


def test_edit_of_some_sale_is_ambiguous():
    command = parse_command("cambiá el total de una venta a 800")
    assert command.action == EDIT
    assert command.refers_to_last is False


@pytest.mark.parametrize("utterance", [
    "Vendí 3 empanadas a $300 cada una, pagaron con MercadoPago",
    "vendí 2 cafés, el total fue 500",
    "pagaron $100, mitad efectivo mitad QR",
    "¿cuánto vendí hoy?",
    "hola",
    "",
    None,
])
def test_not_a_command(utterance):
    assert parse_command(utterance) is None


def test_is_sale_statement():
    assert is_sale_statement("Vendí 3 empanadas")
    assert is_sale_statement("sold two coffees")
    assert not is_sale_statement("la 2")


@pytest.mark.parametrize("text, cents", [
    ("500", 50000),
    ("1.500", 150000),
    ("1500,50", 150050),
    ("1,500.50", 150050),
    ("12.5", 1250),
    ("0", None),
    ("abc", None),
    ("99999999999999999999999999999", None),
    ("20.000.000.000", None),
])
def test_parse_amount_cents(text, cents):
    assert parse_amount_cents(text) == cents


def test_explicit_sale_id():
    assert explicit_sale_id("la venta #42") == 42
    assert explicit_sale_id("la venta de las 3") is None


def test_oversized_total_edit_keeps_no_fields():
    # the amount cannot be stored, so there is nothing to edit
    assert parse_command("cambiá el total a 99999999999999999999999999999") is None


@pytest.mark.parametrize("utterance, expected", [
    ("anulá la segunda", "la segunda"),
    ("Cancelá la 2", "la 2"),
    ("la 3", "la 3"),
])
def test_strip_cancel_verb(utterance, expected):
    assert strip_cancel_verb(utterance) == expected
