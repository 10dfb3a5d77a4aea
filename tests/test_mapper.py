"""Tests for splitting rows into organization and item entities."""

import pytest

from bulkgate.domain.entities import IssueSeverity
from bulkgate.domain.fields import NOT_FOUND
from bulkgate.domain.mapper import EntityMapper, parse_item_code, parse_tax_id
from bulkgate.domain.normalizer import Normalizer
from bulkgate.domain.settings import DuplicatePolicy, ImportSettings

from conftest import ITEM_CODE, ORG_TAX_ID, make_file, org_row


def map_rows(rows, headers=None, settings=None):
    settings = settings or ImportSettings()
    normalized = Normalizer(settings).normalize(make_file(rows, headers=headers))
    return EntityMapper(settings).map(normalized)


@pytest.mark.parametrize(
    "value, expected",
    [
        (30712345678, 30712345678),
        ("30-71234567-8", 30712345678),
        ("30.712.345.678", 30712345678),
        ("30712345678.0", 30712345678),
        ("3071234567", None),
        ("307123456789", None),
        ("30-7123456A-8", None),
        (None, None),
    ],
)
def test_parse_tax_id(value, expected):
    assert parse_tax_id(value) == expected


def test_parse_item_code_is_verbatim_but_trimmed():
    assert parse_item_code("  CERT-0001 ") == "CERT-0001"
    assert parse_item_code("   ") is None
    assert parse_item_code(1234.0) == "1234"


def test_row_yields_organization_and_item():
    result = map_rows([org_row()])

    organization = result.organizations[ORG_TAX_ID]
    item = result.items[ITEM_CODE]
    assert organization.get("legal_name") == "Acme SA"
    assert organization.get("tax_id") == ORG_TAX_ID
    assert item.get("product") == "Lamp"
    assert item.get("tax_id") == ORG_TAX_ID
    assert "legal_name" not in item.fields
    assert result.issues == []


def test_duplicate_key_first_occurrence_wins():
    """Scenario A: the second row with the same tax id is dropped with an issue."""
    rows = [
        org_row(legal_name="First SA", item_code="A-1"),
        org_row(legal_name="Second SA", item_code="A-2"),
    ]

    result = map_rows(rows)

    assert list(result.organizations) == [ORG_TAX_ID]
    assert result.organizations[ORG_TAX_ID].get("legal_name") == "First SA"
    assert result.organizations[ORG_TAX_ID].row_number == 2
    duplicates = [issue for issue in result.issues if issue.code == "DUPLICATE_KEY"]
    assert len(duplicates) == 1
    assert duplicates[0].row_number == 3
    assert duplicates[0].severity == IssueSeverity.ERROR
    # Items keyed by different codes are both kept
    assert list(result.items) == ["A-1", "A-2"]


def test_duplicate_merge_missing_policy_fills_gaps():
    settings = ImportSettings(duplicate_policy=DuplicatePolicy.MERGE_MISSING)
    rows = [
        org_row(email="", item_code="A-1"),
        org_row(legal_name="Second SA", email="second@acme.example", item_code="A-2"),
    ]

    result = map_rows(rows, settings=settings)

    organization = result.organizations[ORG_TAX_ID]
    assert organization.get("legal_name") == "Acme SA"
    assert organization.get("email") == "second@acme.example"
    assert [issue.code for issue in result.issues] == ["DUPLICATE_KEY"]


def test_invalid_tax_id_fails_only_organization():
    result = map_rows([org_row(tax_id="123")])

    assert result.organizations == {}
    assert ITEM_CODE in result.items
    assert "tax_id" not in result.items[ITEM_CODE].fields
    issue = result.issues[0]
    assert issue.code == "INVALID_KEY"
    assert issue.severity == IssueSeverity.ERROR
    assert issue.row_number == 2


def test_missing_item_code_is_row_error():
    result = map_rows([org_row(item_code="")])

    assert result.items == {}
    assert ORG_TAX_ID in result.organizations
    assert [issue.code for issue in result.issues] == ["INVALID_KEY"]


def test_file_without_item_column_yields_only_organizations():
    headers = ["CUIT", "Razón Social", "Dirección", "Email"]
    rows = [["30712345678", "Acme SA", "Street 1", "info@acme.example"]]

    result = map_rows(rows, headers=headers)

    assert list(result.organizations) == [ORG_TAX_ID]
    assert result.items == {}
    assert result.issues == []


def test_missing_required_field_uses_sentinel():
    result = map_rows([org_row(email="", product="")])

    assert result.organizations[ORG_TAX_ID].get("email") == NOT_FOUND
    assert result.items[ITEM_CODE].get("product") == NOT_FOUND
    missing = [issue for issue in result.issues if issue.code == "MISSING_FIELD"]
    assert {issue.field for issue in missing} == {"email", "product"}
    assert all(issue.severity == IssueSeverity.WARNING for issue in missing)


def test_legal_name_falls_back_to_holder():
    headers = ["CUIT", "Titular", "Domicilio", "Correo"]
    rows = [["30712345678", "Holder SRL", "Street 1", "a@b.example"]]

    result = map_rows(rows, headers=headers)

    assert result.organizations[ORG_TAX_ID].get("legal_name") == "Holder SRL"
