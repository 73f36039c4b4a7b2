# Overview: Orchestrates one conversational turn: commands, ordinal selection, extraction, persistence and acknowledgment.

"""
Turn orchestration

handle_turn(tenant_id, utterance, context) -> TurnResult(acknowledgment, context, reply)

ORDER OF DECISIONS:
1. The user message joins the context window.
2. A pending disambiguation list + an ordinal reference ("la 2")
   -> apply the pending action (cancel/edit) to that sale.
3. A cancel/edit command -> explicit id, else the session's last sale,
   else offer today's sales for selection.
4. Anything else -> oracle extraction -> validation -> create_sale.

Every outcome, success or failure, is reported as an acknowledgment
dict with a "kind"; engine errors never escape this function.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from flask import current_app, has_app_context

from ..errors import (
    AlreadyCancelledError,
    AmbiguousReference,
    EngineError,
    ExtractionRejected,
    NotFoundError,
    OracleParseFailure,
    OracleUnavailable,
    SaleVoidedError,
)
from ..extensions import db
from ..models import Tenant
from charla.time_utils import to_utc_z, utcnow
from . import conversation_state as state
from .catalog_service import catalog_snapshot
from .command_parser import CANCEL, EDIT, is_sale_statement, parse_command, strip_cancel_verb
from .conversation_state import ConversationContext
from .extraction_validator import validate_extraction
from .oracle_service import OracleClient, extract
from .prompts import build_outcome_message, build_system_prompt
from .sales_service import (
    cancel_sale,
    create_sale,
    edit_sale,
    list_recent_sales,
    list_sales_for_day,
    tenant_today,
)

logger = logging.getLogger(__name__)

SALE_CREATED = "sale_created"
SALE_CANCELLED = "sale_cancelled"
SALE_UPDATED = "sale_updated"
DISAMBIGUATION = "disambiguation"
CLARIFICATION_NEEDED = "clarification_needed"
NO_TRANSACTION = "no_transaction"
NOT_FOUND = "not_found"
ALREADY_CANCELLED = "already_cancelled"
INVALID_ORDINAL = "invalid_ordinal"
ERROR = "error"


@dataclass(frozen=True)
class TurnSettings:
    window: int = state.DEFAULT_WINDOW
    disambiguation_ttl: int = state.DEFAULT_DISAMBIGUATION_TTL_SECONDS
    generate_replies: bool = True

    @classmethod
    def from_app(cls) -> "TurnSettings":
        if not has_app_context():
            return cls()
        config = current_app.config
        return cls(
            window=config.get("CONTEXT_WINDOW_MESSAGES", state.DEFAULT_WINDOW),
            disambiguation_ttl=config.get(
                "DISAMBIGUATION_TTL_SECONDS", state.DEFAULT_DISAMBIGUATION_TTL_SECONDS
            ),
            generate_replies=config.get("GENERATE_REPLIES", True),
        )


@dataclass
class TurnResult:
    acknowledgment: dict
    context: ConversationContext
    reply: str | None = None

    def to_dict(self) -> dict:
        return {
            "acknowledgment": self.acknowledgment,
            "reply": self.reply,
            "context": self.context.to_dict(),
        }


def _error_kind(exc: EngineError) -> str:
    if isinstance(exc, (ExtractionRejected, OracleParseFailure, OracleUnavailable)):
        return NO_TRANSACTION
    if isinstance(exc, AmbiguousReference):
        return CLARIFICATION_NEEDED
    if isinstance(exc, (AlreadyCancelledError, SaleVoidedError)):
        return ALREADY_CANCELLED
    if isinstance(exc, NotFoundError):
        return NOT_FOUND
    return ERROR


def _error_ack(exc: EngineError) -> dict:
    return {"kind": _error_kind(exc), **exc.to_dict()}


def _sale_option(ordinal: int, sale) -> dict:
    return {
        "ordinal": ordinal,
        "sale_id": sale.id,
        "daily_number": sale.daily_number,
        "total_cents": sale.total_cents,
        "occurred_at": to_utc_z(sale.occurred_at),
        "items": [line.product_label for line in sale.lines],
    }


def _offer_disambiguation(tenant_id, ctx, action, fields, now):
    day = tenant_today(tenant_id, now)
    sales = list_sales_for_day(tenant_id, day)
    if not sales:
        raise AmbiguousReference(
            "No sale to refer to",
            details={"date": day.isoformat(), "action": action},
        )

    ctx = state.offer_disambiguation(
        ctx,
        day.isoformat(),
        [sale.id for sale in sales],
        now=now,
        action=action,
        edit_fields=fields if action == EDIT else None,
    )
    ack = {
        "kind": DISAMBIGUATION,
        "action": action,
        "date": day.isoformat(),
        "options": [_sale_option(i, sale) for i, sale in enumerate(sales, start=1)],
    }
    if action == EDIT:
        ack["fields"] = fields
    return ack, ctx


def _apply_to_sale(tenant_id, ctx, action, sale_id, fields, now):
    """Cancel or edit one sale. Any pending list is consumed either way."""
    ctx = state.clear_disambiguation(ctx)
    try:
        if action == CANCEL:
            sale = cancel_sale(tenant_id, sale_id, now=now)
        else:
            sale = edit_sale(tenant_id, sale_id, fields or {})
    except EngineError as exc:
        db.session.rollback()
        if isinstance(exc, AlreadyCancelledError) and ctx.last_sale_id == sale_id:
            ctx = state.record_cancellation(ctx)
        return _error_ack(exc), ctx

    if action == CANCEL:
        ctx = state.record_cancellation(ctx)
        return {"kind": SALE_CANCELLED, "sale": sale.to_dict(include_children=True)}, ctx

    return {
        "kind": SALE_UPDATED,
        "updated_fields": sorted((fields or {}).keys()),
        "sale": sale.to_dict(include_children=True),
    }, ctx


def _handle_ordinal(tenant_id, ctx, utterance, command, now, settings):
    """Returns (ack, ctx) when the utterance picks from the pending list, else None."""
    pending = ctx.pending_disambiguation
    if pending is None:
        return None
    if command is not None and (command.action != CANCEL or command.sale_id is not None):
        return None

    if is_sale_statement(utterance):
        return None
    pick = strip_cancel_verb(utterance) if command is not None else utterance
    ordinal = state.parse_ordinal(pick)
    if ordinal is None:
        return None

    sale_id = state.resolve_ordinal(ctx, pick, now=now, ttl=settings.disambiguation_ttl)
    ctx = state.clear_disambiguation(ctx)
    if sale_id is None:
        expired = state.is_expired(pending, now=now, ttl=settings.disambiguation_ttl)
        return {
            "kind": INVALID_ORDINAL,
            "ordinal": ordinal,
            "available": sorted(pending.ordinals),
            "expired": expired,
            "message": "Selection expired" if expired else "No sale with that number in the list",
        }, ctx

    action = CANCEL if command is not None else pending.action
    fields = pending.edit_fields if action == EDIT else None
    return _apply_to_sale(tenant_id, ctx, action, sale_id, fields, now)


def _handle_command(tenant_id, ctx, command, now):
    target = command.sale_id
    if target is None and command.refers_to_last:
        target = ctx.last_sale_id
    if target is None:
        return _offer_disambiguation(tenant_id, ctx, command.action, command.fields, now)
    return _apply_to_sale(tenant_id, ctx, command.action, target, command.fields, now)


def _handle_extraction(tenant_id, ctx, utterance, complete, now):
    snapshot = catalog_snapshot(tenant_id)
    raw = extract(utterance, snapshot, complete)

    expense = raw.get("expense") if raw.get("hasExpenseData") else None
    result = validate_extraction(raw)
    if not result.accepted:
        details = dict(result.details)
        if expense:
            details["expense"] = expense
        raise ExtractionRejected(result.reason, details=details)

    written = create_sale(tenant_id, result.sale, now=now)
    ctx = state.record_new_sale(ctx, written.sale.id)

    ack = {
        "kind": SALE_CREATED,
        "sale": written.sale.to_dict(include_children=True),
        "price_changes": [change.to_dict() for change in written.price_changes],
        "created_products": list(written.created_products),
    }
    if expense:
        ack["expense"] = expense
    return ack, ctx


def _default_oracle():
    return OracleClient.from_config(current_app.config)


def _oracle_configured() -> bool:
    return has_app_context() and bool(current_app.config.get("OPENAI_API_KEY"))


def _complete_fn(oracle):
    return oracle.complete if hasattr(oracle, "complete") else oracle


def _generate_reply(tenant_id, ctx, ack, chat) -> str | None:
    tenant = db.session.get(Tenant, tenant_id)
    messages = [
        {"role": "system", "content": build_system_prompt(
            tenant, catalog_snapshot(tenant_id), list_recent_sales(tenant_id, 5)
        )},
        *ctx.messages,
        {"role": "system", "content": build_outcome_message(ack)},
    ]
    try:
        reply = chat(messages)
    except OracleUnavailable as exc:
        logger.warning("Reply generation failed for tenant %s: %s", tenant_id, exc.message)
        return None
    return (reply or "").strip() or None


def handle_turn(
    tenant_id: int,
    utterance: str,
    context: ConversationContext | None = None,
    oracle=None,
    now: datetime | None = None,
    settings: TurnSettings | None = None,
) -> TurnResult:
    """
    Process one utterance for a tenant.

    oracle: object with complete(prompt) -> text (and optionally
    chat(messages) -> text), or a plain callable prompt -> text.
    Defaults to an OracleClient built from app config.
    """
    now = now or utcnow()
    settings = settings or TurnSettings.from_app()
    ctx = state.append_message(context or ConversationContext(), "user", utterance, settings.window)

    try:
        command = parse_command(utterance)
        outcome = _handle_ordinal(tenant_id, ctx, utterance, command, now, settings)
        if outcome is None and ctx.pending_disambiguation is not None:
            # anything but a bare pick abandons the list
            ctx = state.clear_disambiguation(ctx)
        if outcome is None and command is not None:
            outcome = _handle_command(tenant_id, ctx, command, now)
        if outcome is None:
            if oracle is None:
                oracle = _default_oracle()
            outcome = _handle_extraction(tenant_id, ctx, utterance, _complete_fn(oracle), now)
        ack, ctx = outcome
    except EngineError as exc:
        db.session.rollback()
        if isinstance(exc, (OracleUnavailable, OracleParseFailure)):
            logger.warning("No transaction for tenant %s: %s", tenant_id, exc.message)
        ack = _error_ack(exc)

    reply = None
    if settings.generate_replies and oracle is None and _oracle_configured():
        oracle = _default_oracle()
    chat = getattr(oracle, "chat", None)
    if settings.generate_replies and callable(chat):
        reply = _generate_reply(tenant_id, ctx, ack, chat)
        if reply:
            ctx = state.append_message(ctx, "assistant", reply, settings.window)

    logger.info("Turn for tenant %s -> %s", tenant_id, ack["kind"])
    return TurnResult(acknowledgment=ack, context=ctx, reply=reply)
