# Overview: Prompt builders for the oracle (structured extraction and conversational replies).

from __future__ import annotations

import json

from .catalog_service import PAYMENT_METHOD_SYNONYMS, CatalogSnapshot

EXTRACTION_SCHEMA = {
    "hasSaleData": "boolean",
    "sale": {
        "items": [
            {
                "product_name": "string",
                "presentation": "string or null",
                "quantity": "number",
                "unit_price": "number",
                "subtotal": "number",
            }
        ],
        "total": "number",
        "customer": "string or null",
        "note": "string or null",
        "payment_methods": [
            {"method_name": "string", "amount": "number"}
        ],
    },
    "hasExpenseData": "boolean",
    "expense": {"description": "string", "amount": "number", "category": "string"},
}

NO_DATA_REPLY = '{"hasSaleData": false, "hasExpenseData": false}'


def format_money(cents: int | None) -> str:
    if cents is None:
        return "sin precio"
    whole, frac = divmod(int(cents), 100)
    if frac:
        return f"${whole}.{frac:02d}"
    return f"${whole}"


def _product_lines(snapshot: CatalogSnapshot) -> str:
    if not snapshot.products:
        return "- (sin productos cargados)"
    return "\n".join(
        f"- {p['name']} (precio actual: {format_money(p.get('current_price_cents'))})"
        for p in snapshot.products
    )


def _payment_lines(snapshot: CatalogSnapshot) -> str:
    if not snapshot.payment_methods:
        return "- (sin métodos de pago)"
    return "\n".join(f"- {name}" for name in snapshot.payment_method_names)


def _synonym_lines() -> str:
    grouped: dict[str, list[str]] = {}
    for phrase, canonical in PAYMENT_METHOD_SYNONYMS.items():
        if phrase != canonical:
            grouped.setdefault(canonical, []).append(f'"{phrase}"')
    return "\n".join(
        f"- {', '.join(phrases)} -> el método que contiene \"{canonical}\""
        for canonical, phrases in grouped.items()
    )


def build_extraction_prompt(utterance: str, snapshot: CatalogSnapshot) -> str:
    """Single-shot prompt asking the oracle for the extraction JSON only."""
    schema = json.dumps(EXTRACTION_SCHEMA, indent=2, ensure_ascii=False)
    return f"""Sos un extractor de datos de ventas para un pequeño negocio en Argentina.

Analizá ÚNICAMENTE el texto del usuario y devolvé datos estructurados si describe una
TRANSACCIÓN COMPLETADA con productos, cantidades y precios concretos.

NO extraigas datos de preguntas, pedidos de ayuda ni escenarios hipotéticos
("¿cómo registro una venta?", "quiero vender algo", "¿cuánto vendí hoy?").
En esos casos respondé exactamente: {NO_DATA_REPLY}

## PRODUCTOS DEL NEGOCIO
Usá estos nombres cuando el usuario se refiera a ellos; si menciona otro producto,
usá el nombre tal como lo dijo.
{_product_lines(snapshot)}

## MÉTODOS DE PAGO DISPONIBLES
En method_name usá uno de estos nombres exactos.
{_payment_lines(snapshot)}

## SINÓNIMOS DE MÉTODOS DE PAGO
{_synonym_lines()}

## PAGOS DIVIDIDOS
Convertí siempre las fracciones en montos explícitos por método:
- "mitad" o "la mitad" = total / 2
- "un tercio" = total / 3
- "$X en efectivo, el resto con tarjeta" = X en efectivo, (total - X) con tarjeta
Ejemplo: "pagaron $100, mitad efectivo mitad QR" ->
[{{"method_name": "Efectivo", "amount": 50}}, {{"method_name": "Billetera Digital", "amount": 50}}]

## REGLAS
- hasSaleData es true SOLO si hay productos con cantidad y precio
- quantity > 0 y unit_price > 0 en todos los ítems; subtotal = unit_price * quantity
- total = suma de los subtotales
- los montos de payment_methods suman el total
- si el usuario no dijo cómo le pagaron, payment_methods es []
- presentation puede ser null, pero si el texto menciona una unidad ("docena", "caja") reflejala

## FORMATO
{schema}

Entrada del usuario: "{utterance}"

Respondé ÚNICAMENTE con el JSON, sin texto adicional."""


def build_system_prompt(tenant, snapshot: CatalogSnapshot, recent_sales: list) -> str:
    """Persona prompt for the natural-language reply."""
    business = getattr(tenant, "business_name", None) or getattr(tenant, "name", "el negocio")
    recent = "\n".join(
        f"- Venta #{sale.daily_number} del {sale.business_date.isoformat()}: {format_money(sale.total_cents)}"
        f" ({len(sale.lines)} productos)"
        for sale in recent_sales
    ) or "- (sin ventas recientes)"

    return f"""Sos Charla, asistente de ventas por voz para {business}.
Hablás en español argentino, sos claro, conciso y no pedís confirmaciones innecesarias.

Los usuarios te hablan por voz: esperá frases coloquiales.
Mapeo de pagos: "QR" -> Billetera Digital, "MP" -> MercadoPago, "cash"/"plata" -> Efectivo.

El sistema ya procesó el mensaje del usuario y te informa el resultado. Tu tarea es
confirmarlo en una o dos oraciones, sin inventar datos ni métricas que no te dieron.
Si el resultado pide una aclaración, hacé una sola pregunta concreta.

## PRODUCTOS
{_product_lines(snapshot)}

## MÉTODOS DE PAGO
{_payment_lines(snapshot)}

## ACTIVIDAD RECIENTE
{recent}
"""


def build_outcome_message(acknowledgment: dict) -> str:
    """System message telling the reply model what the engine did this turn."""
    return (
        "Resultado del procesamiento de este mensaje (confirmalo con naturalidad):\n"
        + json.dumps(acknowledgment, indent=2, ensure_ascii=False, default=str)
    )
