"""
Field mapping: turns a merged row into CRM contact and company properties.

`field_mappings` maps source columns to CRM target fields. Targets with the
`company.` prefix are company properties, everything else is a contact
property. Columns without a mapping pass through only when the column name
already is a target field.
"""

from typing import Any, Dict, Mapping, Tuple

COMPANY_PREFIX = "company."

# Contact properties every HubSpot portal has
KNOWN_CONTACT_FIELDS = frozenset({
    "email",
    "firstname",
    "lastname",
    "phone",
    "company",
    "jobtitle",
    "city",
    "state",
    "country",
    "zip",
    "website",
    "address",
})

# Mapping targets meaning "do not send this column"
IGNORED_TARGETS = frozenset({"", "skip", "ignore"})


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def resolve_target(column: str, field_mappings: Mapping[str, str]) -> str | None:
    """CRM target field for a column, or None if the column is not sent."""
    if column in field_mappings:
        target = _clean(field_mappings[column])
        return None if target.lower() in IGNORED_TARGETS else target
    if column in KNOWN_CONTACT_FIELDS or column.startswith(COMPANY_PREFIX):
        return column
    return None


def build_crm_properties(
    merged_data: Mapping[str, Any],
    field_mappings: Mapping[str, str] | None = None,
) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Split a row into (contact_properties, company_properties).

    Empty values are dropped and all values are stripped strings. When two
    columns map to the same target, the later column wins.

    Example:
        >>> build_crm_properties(
        ...     {"Email": " ana@acme.io ", "Org": "Acme", "Notes": "x"},
        ...     {"Email": "email", "Org": "company.name"},
        ... )
        ({'email': 'ana@acme.io'}, {'name': 'Acme'})
    """
    mappings = field_mappings or {}
    contact: Dict[str, str] = {}
    company: Dict[str, str] = {}

    for column, value in merged_data.items():
        target = resolve_target(column, mappings)
        text = _clean(value)
        if target is None or not text:
            continue

        if target.startswith(COMPANY_PREFIX):
            company_field = target[len(COMPANY_PREFIX):]
            if company_field:
                company[company_field] = text
        else:
            contact[target] = text

    return contact, company


def mapped_email(merged_data: Mapping[str, Any], field_mappings: Mapping[str, str] | None = None) -> str:
    """The row's contact email after mapping ("" if none)."""
    contact, _ = build_crm_properties(merged_data, field_mappings)
    return contact.get("email", "")
