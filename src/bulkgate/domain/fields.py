"""Canonical field catalogue for organizations and items.

The catalogue is the single place that knows which canonical fields exist,
how raw cell values are coerced for each of them, and which header variants
resolve to them. Services receive these tables through ``ImportSettings`` so
callers can swap them without touching the pipeline.
"""

from enum import StrEnum
from typing import Any


NOT_FOUND = "NOT_FOUND"


class EntityType(StrEnum):
    """The two entity types handled by an import."""

    ORGANIZATION = "organization"
    ITEM = "item"


class FieldKind(StrEnum):
    """How a raw cell value is coerced for a canonical field."""

    TEXT = "text"
    DATE = "date"
    IDENTIFIER = "identifier"
    INTEGER = "integer"


ORGANIZATION_KEY = "tax_id"
ITEM_KEY = "item_code"
ITEM_REFERENCE = "tax_id"

TAX_ID_LENGTH = 11

ORGANIZATION_FIELDS: tuple[str, ...] = (
    "tax_id",
    "legal_name",
    "address",
    "email",
    "phone",
    "contact",
)

ITEM_FIELDS: tuple[str, ...] = (
    "item_code",
    "tax_id",
    "holder",
    "certification_type",
    "status",
    "manufacturer",
    "plant",
    "origin",
    "product",
    "brand",
    "model",
    "technical_specs",
    "standards",
    "test_report_number",
    "laboratory",
    "foreign_body",
    "foreign_certificate_number",
    "foreign_certificate_issued_on",
    "agreement",
    "category_code",
    "subcategory_code",
    "subcategory_name",
    "issued_on",
    "expires_on",
    "cancelled_on",
    "cancellation_reason",
    "days_to_expiry",
    "certification_body",
    "certification_scheme",
)

# Generated downstream (documents, QR codes, workflow); an import never owns them.
ITEM_PROTECTED_FIELDS: tuple[str, ...] = (
    "public_id",
    "qr_path",
    "qr_link",
    "qr_status",
    "qr_generated_at",
    "certificate_path",
    "certificate_status",
    "declaration_path",
    "declaration_status",
    "sent_to_client",
)

ITEM_INSERT_DEFAULTS: dict[str, str] = {
    "declaration_status": "not_generated",
    "certificate_status": "pending_upload",
    "sent_to_client": "pending",
    "qr_status": "not_generated",
}

FIELD_KINDS: dict[str, FieldKind] = {
    "tax_id": FieldKind.IDENTIFIER,
    "category_code": FieldKind.IDENTIFIER,
    "subcategory_code": FieldKind.IDENTIFIER,
    "days_to_expiry": FieldKind.INTEGER,
    "foreign_certificate_issued_on": FieldKind.DATE,
    "issued_on": FieldKind.DATE,
    "expires_on": FieldKind.DATE,
    "cancelled_on": FieldKind.DATE,
}

ORGANIZATION_REQUIRED_FIELDS: tuple[str, ...] = ("legal_name", "address", "email")
ITEM_REQUIRED_FIELDS: tuple[str, ...] = ("product",)

REQUIRED_COLUMNS: tuple[str, ...] = ("tax_id",)

ORGANIZATION_COMPARABLE_FIELDS: tuple[str, ...] = (
    "legal_name",
    "address",
    "email",
    "phone",
    "contact",
)

ITEM_COMPARABLE_FIELDS: tuple[str, ...] = (
    "product",
    "brand",
    "model",
    "status",
    "manufacturer",
    "plant",
    "origin",
    "technical_specs",
    "standards",
    "test_report_number",
    "laboratory",
    "issued_on",
    "expires_on",
    "certification_body",
)

DEFAULT_SYNONYMS: dict[str, list[str]] = {
    "tax_id": ["tax id", "tax_id", "cuit", "cuil", "nro cuit", "numero cuit", "vat number"],
    "legal_name": ["legal name", "razon social", "company", "company name", "empresa", "nombre empresa"],
    "address": ["address", "legal address", "direccion", "direccion legal", "domicilio"],
    "email": ["email", "e-mail", "mail", "correo", "correo electronico"],
    "phone": ["phone", "telephone", "telefono", "tel", "celular", "mobile"],
    "contact": ["contact", "contact name", "contacto", "persona contacto", "nombre contacto"],
    "item_code": ["item code", "item_code", "codificacion", "codigo", "code", "certificate number", "nro certificado"],
    "holder": ["holder", "titular"],
    "certification_type": ["certification type", "tipo certificacion", "tipo"],
    "status": ["status", "estado", "vigencia"],
    "manufacturer": ["manufacturer", "fabricante", "productor"],
    "plant": ["plant", "manufacturing plant", "planta", "planta fabricacion"],
    "origin": ["origin", "country of origin", "origen", "pais origen", "procedencia"],
    "product": ["product", "producto", "description", "descripcion", "item"],
    "brand": ["brand", "marca"],
    "model": ["model", "modelo"],
    "technical_specs": ["technical specs", "specifications", "caracteristicas tecnicas", "especificaciones"],
    "standards": ["standards", "applicable standards", "normas", "normas aplicacion", "normativa"],
    "test_report_number": ["test report", "test report number", "informe ensayo", "nro informe"],
    "laboratory": ["laboratory", "lab", "laboratorio"],
    "foreign_body": ["foreign body", "ocp extranjero", "organismo extranjero"],
    "foreign_certificate_number": [
        "foreign certificate number",
        "certificado extranjero",
        "nro certificado extranjero",
    ],
    "foreign_certificate_issued_on": [
        "foreign certificate issued on",
        "fecha emision certificado extranjero",
        "fecha emision extranjero",
    ],
    "agreement": ["agreement", "disposicion convenio", "convenio"],
    "category_code": ["category code", "cod rubro", "codigo rubro", "rubro"],
    "subcategory_code": ["subcategory code", "cod subrubro", "codigo subrubro", "subrubro"],
    "subcategory_name": ["subcategory name", "nombre subrubro", "desc subrubro"],
    "issued_on": ["issued on", "issue date", "fecha emision", "emision", "fecha alta"],
    "expires_on": ["expires on", "expiry date", "vencimiento", "fecha vencimiento", "valido hasta"],
    "cancelled_on": ["cancelled on", "cancellation date", "fecha cancelacion", "cancelacion"],
    "cancellation_reason": ["cancellation reason", "motivo cancelacion"],
    "days_to_expiry": ["days to expiry", "dias para vencer", "dias vencimiento"],
    "certification_body": ["certification body", "organismo certificacion", "organismo"],
    "certification_scheme": ["certification scheme", "esquema certificacion", "esquema"],
}


def entity_fields(entity_type: EntityType) -> tuple[str, ...]:
    """Return the canonical fields an entity of the given type may carry."""
    if entity_type == EntityType.ORGANIZATION:
        return ORGANIZATION_FIELDS
    return ITEM_FIELDS


def entity_key_field(entity_type: EntityType) -> str:
    """Return the natural-key field name for an entity type."""
    if entity_type == EntityType.ORGANIZATION:
        return ORGANIZATION_KEY
    return ITEM_KEY


def is_absent(value: Any) -> bool:
    """Return True when an incoming value expresses no opinion."""
    return value is None or value == NOT_FOUND


def is_empty(value: Any) -> bool:
    """Return True when a stored value counts as empty for fill-only updates."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False
