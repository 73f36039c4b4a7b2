# Overview: Recognizes cancel/edit commands in an utterance before anything is sent to the oracle.

"""
Command parser

Cancellations and edits of an existing sale are applied directly by the
transaction writer; only utterances that are not commands go to the
oracle for extraction.

TARGETS:
- explicit id: "#42", "venta id 42", "sale number 42"
- the session's last sale: "la venta", "la última", "esa", "the sale",
  "the last one", or a clitic verb ("anulala", "borrala"). Edits without
  any reference ("el total era 500") also target the last sale.
- otherwise ambiguous ("eliminá una venta"): the turn offers today's
  sales for selection by ordinal
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from .catalog_service import fold_text
from .extraction_validator import to_cents

CANCEL = "cancel"
EDIT = "edit"

_CANCEL_VERB = re.compile(
    r"\b(anul\w*|cancel\w*|elimin\w*|borr\w*|delete|remove|void)\b"
)
_CANCEL_CLITIC = re.compile(r"\b(anula|cancela|elimina|borra)(la|lo)\b")
_EDIT_VERB = re.compile(
    r"\b(cambi\w*|modific\w*|correg\w*|corregi\w*|edit\w*|actualiz\w*|change|update|fix|set|marc\w*|mark)\b"
)
_CORRECTION = re.compile(r"\b(era|fue|was|should be|deberia ser)\b")
_SALE_VERB = re.compile(r"\b(vend\w*|sold|sell\w*|cobr\w*)\b")

_EXPLICIT_ID = re.compile(
    r"#\s*(\d+)"
    r"|\b(?:id|numero|nro\.?|n°|number)\s*:?\s*#?\s*(\d+)",
    re.IGNORECASE,
)
_LAST_REFERENCE = re.compile(
    r"\b(la venta|esa venta|esta venta|la ultima|ultima venta|esa|the sale|that sale|this sale|the last|last sale|last one)\b"
)
_SOME_SALE = re.compile(r"\b(una venta|alguna venta|a sale|some sale|one of)\b")

_TOTAL = re.compile(r"\btotal\b[^\d$]{0,40}\$?\s*(\d[\d.,]*)")
_CUSTOMER = re.compile(
    r"\b(?:cliente|customer|client)\b(?:\s+(?:era|es|fue|a|was|is|to|=|:))*\s+(.+?)\s*(?:[.,;!?]|$)",
    re.IGNORECASE,
)
_NOTE = re.compile(r"\b(?:nota|note)\b\s*[:\-]?\s*(?:que\s+)?(.+)$", re.IGNORECASE)
_INCOMPLETE = re.compile(r"\b(incomplet[ao]|incomplete|pendiente)\b")
_COMPLETE = re.compile(r"\b(complet[ao]|complete)\b")
_MARK = re.compile(r"\b(marc\w*|mark)\b")
_THOUSANDS = re.compile(r"^\d{1,3}(\.\d{3})+(,\d{1,2})?$")


@dataclass(frozen=True)
class Command:
    action: str
    sale_id: int | None = None
    refers_to_last: bool = False
    fields: dict = field(default_factory=dict)


def parse_amount_cents(text: str) -> int | None:
    """
    "500", "$1.500", "1500,50", "1,500.50" -> cents. None if not an amount
    or if it is beyond the storable range.

    A dot followed by exactly three digits is a thousands separator;
    otherwise the last separator is the decimal point.
    """
    raw = text.strip().rstrip(".,")
    if not raw:
        return None
    if _THOUSANDS.match(raw):
        raw = raw.replace(".", "").replace(",", ".")
    elif "," in raw and "." in raw:
        raw = raw.replace(",", "")
    else:
        raw = raw.replace(",", ".")
    try:
        value = Decimal(raw)
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0:
        return None
    return to_cents(value)


def explicit_sale_id(text: str) -> int | None:
    match = _EXPLICIT_ID.search(fold_text(text))
    if not match:
        return None
    return int(match.group(1) or match.group(2))


def _edit_fields(original: str, text: str) -> dict:
    """original: whitespace-collapsed utterance (keeps case); text: folded form."""
    fields = {}

    total = _TOTAL.search(text)
    if total:
        cents = parse_amount_cents(total.group(1))
        if cents is not None:
            fields["total_cents"] = cents

    customer = _CUSTOMER.search(original)
    if customer and customer.group(1).strip():
        fields["customer_name"] = customer.group(1).strip()

    note = _NOTE.search(original)
    if note and note.group(1).strip():
        fields["note"] = note.group(1).strip()

    if _INCOMPLETE.search(text):
        fields["is_incomplete"] = True
    elif _COMPLETE.search(text) and _MARK.search(text):
        fields["is_incomplete"] = False

    return fields


def is_sale_statement(utterance: str | None) -> bool:
    """Utterances like "vendí 3 empanadas" or "sold two coffees" describe a new sale."""
    return bool(_SALE_VERB.search(fold_text(utterance)))


def strip_cancel_verb(utterance: str | None) -> str:
    """"anulá la segunda" -> "la segunda" (folded)."""
    return " ".join(_CANCEL_VERB.sub(" ", fold_text(utterance)).split())


def parse_command(utterance: str | None) -> Command | None:
    """
    Cancel/edit command in the utterance, or None when it should go to
    the oracle as a possible new sale.
    """
    text = fold_text(utterance)
    if not text:
        return None

    # "vendí 3 empanadas..." is always a new sale, even if it says "total" or "cliente"
    if _SALE_VERB.search(text):
        return None

    sale_id = explicit_sale_id(text)
    stripped = _EXPLICIT_ID.sub(" ", text)

    if _CANCEL_VERB.search(stripped):
        refers_to_last = bool(_LAST_REFERENCE.search(stripped) or _CANCEL_CLITIC.search(stripped))
        return Command(action=CANCEL, sale_id=sale_id, refers_to_last=refers_to_last)

    original = _EXPLICIT_ID.sub(" ", " ".join(utterance.split()))
    fields = _edit_fields(original, stripped)
    if not fields:
        return None
    if not (_EDIT_VERB.search(stripped) or _CORRECTION.search(stripped) or "note" in fields):
        return None

    return Command(
        action=EDIT,
        sale_id=sale_id,
        refers_to_last=not _SOME_SALE.search(stripped),
        fields=fields,
    )
