# Overview: Per-conversation session context threaded through each turn (last sale, pending disambiguation, message window).

"""
Conversation Session State

The caller owns the context and passes it in on every turn; the engine
returns a new one. Nothing here touches the database.

STATE MACHINE (cancel/edit a sale):
    Idle --ambiguous reference--> AwaitingOrdinal (pending map shown)
    AwaitingOrdinal --valid ordinal--> Idle (target resolved)
    AwaitingOrdinal --invalid/expired ordinal--> Idle (error reported, map cleared)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime

from charla.time_utils import parse_iso_datetime, to_utc_z, utcnow

DEFAULT_WINDOW = 10
DEFAULT_DISAMBIGUATION_TTL_SECONDS = 600

ORDINAL_WORDS = {
    # Spanish ordinals
    "primera": 1, "primero": 1, "primer": 1,
    "segunda": 2, "segundo": 2,
    "tercera": 3, "tercero": 3, "tercer": 3,
    "cuarta": 4, "cuarto": 4,
    "quinta": 5, "quinto": 5,
    "sexta": 6, "sexto": 6,
    "septima": 7, "septimo": 7, "séptima": 7, "séptimo": 7,
    "octava": 8, "octavo": 8,
    "novena": 9, "noveno": 9,
    "decima": 10, "decimo": 10, "décima": 10, "décimo": 10,
    # Cardinals ("una"/"one" are left out: "eliminá una venta", "the second one")
    "dos": 2, "tres": 3, "cuatro": 4, "cinco": 5,
    "seis": 6, "siete": 7, "ocho": 8, "nueve": 9, "diez": 10,
    # English
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
    "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "1st": 1, "2nd": 2, "3rd": 3, "4th": 4, "5th": 5,
    "6th": 6, "7th": 7, "8th": 8, "9th": 9, "10th": 10,
    "1ra": 1, "2da": 2, "3ra": 3, "4ta": 4, "5ta": 5,
    "1ro": 1, "2do": 2, "3ro": 3, "4to": 4, "5to": 5,
    "1°": 1, "2°": 2, "3°": 3, "4°": 4, "5°": 5,
}

_TOKEN = re.compile(r"#?\d+(?:st|nd|rd|th|ra|da|ro|do|ta|to|°)?|[^\W\d_]+", re.UNICODE)
_DIGITS = re.compile(r"^#?(\d+)$")
# Words allowed around the number in a pick such as "la segunda venta" or "the 2nd one"
_ORDINAL_FILLERS = frozenset({
    "la", "el", "lo", "the", "numero", "número", "nro", "number",
    "venta", "sale", "one", "opcion", "opción", "option",
})
_ORDINAL_PUNCTUATION = set(" \t.,;:!?¡¿")


@dataclass(frozen=True)
class PendingDisambiguation:
    date_iso: str
    ordinals: dict[int, int]
    shown_at: datetime
    action: str = "cancel"
    edit_fields: dict | None = None

    def to_dict(self) -> dict:
        return {
            "date": self.date_iso,
            "ordinals": {str(k): v for k, v in self.ordinals.items()},
            "shown_at": to_utc_z(self.shown_at),
            "action": self.action,
            "edit_fields": self.edit_fields,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingDisambiguation":
        return cls(
            date_iso=str(data["date"]),
            ordinals={int(k): int(v) for k, v in (data.get("ordinals") or {}).items()},
            shown_at=parse_iso_datetime(data.get("shown_at")) or utcnow(),
            action=data.get("action") or "cancel",
            edit_fields=data.get("edit_fields"),
        )


@dataclass(frozen=True)
class ConversationContext:
    messages: tuple[dict, ...] = ()
    last_sale_id: int | None = None
    pending_disambiguation: PendingDisambiguation | None = None

    @property
    def awaiting_ordinal(self) -> bool:
        return self.pending_disambiguation is not None

    def to_dict(self) -> dict:
        return {
            "messages": [dict(m) for m in self.messages],
            "last_sale_id": self.last_sale_id,
            "pending_disambiguation": (
                self.pending_disambiguation.to_dict() if self.pending_disambiguation else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "ConversationContext":
        """
        Build a context from its JSON form. Malformed parts are dropped
        rather than failing the turn: the caller may hold stale state.
        """
        if not data:
            return cls()

        messages = tuple(
            {"role": m["role"], "content": m["content"]}
            for m in (data.get("messages") or [])
            if isinstance(m, dict)
            and m.get("role") in ("user", "assistant")
            and isinstance(m.get("content"), str)
        )

        last_sale_id = data.get("last_sale_id")
        if not isinstance(last_sale_id, int) or isinstance(last_sale_id, bool):
            last_sale_id = None

        pending = None
        raw_pending = data.get("pending_disambiguation")
        if isinstance(raw_pending, dict) and raw_pending.get("date"):
            try:
                pending = PendingDisambiguation.from_dict(raw_pending)
            except (KeyError, TypeError, ValueError):
                pending = None

        return cls(messages=messages, last_sale_id=last_sale_id, pending_disambiguation=pending)


def record_new_sale(ctx: ConversationContext, sale_id: int) -> ConversationContext:
    return replace(ctx, last_sale_id=sale_id, pending_disambiguation=None)


def record_cancellation(ctx: ConversationContext) -> ConversationContext:
    return replace(ctx, last_sale_id=None, pending_disambiguation=None)


def clear_disambiguation(ctx: ConversationContext) -> ConversationContext:
    return replace(ctx, pending_disambiguation=None)


def offer_disambiguation(
    ctx: ConversationContext,
    date_iso: str,
    ordered_sale_ids: list[int],
    now: datetime | None = None,
    action: str = "cancel",
    edit_fields: dict | None = None,
) -> ConversationContext:
    """Number the sales 1..n in the given order and remember when the list was shown."""
    pending = PendingDisambiguation(
        date_iso=date_iso,
        ordinals={index: sale_id for index, sale_id in enumerate(ordered_sale_ids, start=1)},
        shown_at=now or utcnow(),
        action=action,
        edit_fields=dict(edit_fields) if edit_fields else None,
    )
    return replace(ctx, pending_disambiguation=pending)


def append_message(
    ctx: ConversationContext,
    role: str,
    content: str,
    window: int = DEFAULT_WINDOW,
) -> ConversationContext:
    messages = ctx.messages + ({"role": role, "content": content},)
    if window and len(messages) > window:
        messages = messages[-window:]
    return replace(ctx, messages=messages)


def parse_ordinal(text: str | None) -> int | None:
    """
    Bare small-number reference -> int.

    "la 2", "#3", "2" -> digits; "la segunda", "the second one", "tres"
    -> words up to ten. The whole text must be the reference: any other
    word ("2 cafés con leche") or a second number yields None.
    """
    if not text:
        return None

    folded = text.casefold()
    if set(_TOKEN.sub(" ", folded)) - _ORDINAL_PUNCTUATION:
        return None

    found = []
    for token in _TOKEN.findall(folded):
        digits = _DIGITS.match(token)
        if digits:
            found.append(int(digits.group(1)))
            continue
        value = ORDINAL_WORDS.get(token.lstrip("#"))
        if value is not None:
            found.append(value)
        elif token not in _ORDINAL_FILLERS:
            return None

    distinct = set(found)
    if len(distinct) != 1:
        return None
    return distinct.pop()


def is_expired(
    pending: PendingDisambiguation,
    now: datetime | None = None,
    ttl: int | None = None,
) -> bool:
    ttl = DEFAULT_DISAMBIGUATION_TTL_SECONDS if ttl is None else ttl
    now = now or utcnow()
    return (now - pending.shown_at).total_seconds() > ttl


def resolve_ordinal(
    ctx: ConversationContext,
    text: str | None,
    now: datetime | None = None,
    ttl: int | None = None,
) -> int | None:
    """Sale id for an ordinal reference, or None (no map, expired, unparsable, out of range)."""
    pending = ctx.pending_disambiguation
    if pending is None:
        return None
    if is_expired(pending, now=now, ttl=ttl):
        return None
    ordinal = parse_ordinal(text)
    if ordinal is None:
        return None
    return pending.ordinals.get(ordinal)
