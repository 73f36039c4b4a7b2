# Overview: Flask API route for conversational turns; parses input and returns JSON responses.

# backend/charla/routes/conversation.py
"""
Conversation endpoint.

The client owns the conversation context: it sends back the "context"
object returned by the previous turn. The server keeps no session state.

MULTI-TENANT: tenant comes from X-Tenant-Id (see @require_tenant).
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant
from ..extensions import db
from ..services.conversation_state import ConversationContext
from ..services.turn_service import handle_turn

conversation_bp = Blueprint("conversation", __name__, url_prefix="/api/conversation")


@conversation_bp.post("")
@require_tenant
def conversation_turn_route():
    """
    Process one utterance.

    Body:
    - message: str (required)
    - context: object (optional, as returned by the previous turn)

    Returns the acknowledgment, an optional natural-language reply and
    the updated context. Engine failures are reported inside the
    acknowledgment with status 200; only malformed requests are 4xx.
    """
    data = request.get_json(silent=True) or {}
    message = data.get("message")

    if not isinstance(message, str) or not message.strip():
        return jsonify({"error": "message required"}), 400

    max_length = current_app.config.get("MAX_MESSAGE_LENGTH", 5000)
    if len(message) > max_length:
        return jsonify({"error": f"message exceeds {max_length} characters"}), 400

    raw_context = data.get("context")
    if raw_context is not None and not isinstance(raw_context, dict):
        return jsonify({"error": "context must be an object"}), 400

    try:
        result = handle_turn(
            g.tenant_id,
            message.strip(),
            context=ConversationContext.from_dict(raw_context),
        )
        return jsonify(result.to_dict()), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to process conversation turn")
        return jsonify({"error": "Internal server error"}), 500
