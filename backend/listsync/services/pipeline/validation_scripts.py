"""
Validation scripts for the validate step of the enrichment stage.

Scripts run in `order` on a row's merged data. Transform scripts rewrite
the values of the columns mapped to their target fields; validate scripts
only report. Errors fail the row, warnings are logged and the row goes on.

Rewritten values are returned as `changes` (column -> new value) so the
caller can store them next to the untouched raw upload.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from listsync.services.pipeline.field_mapping import resolve_target

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
STRICT_EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

PERSONAL_EMAIL_DOMAINS = frozenset({
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "aol.com", "icloud.com",
    "mail.com", "protonmail.com", "zoho.com", "ymail.com", "live.com", "msn.com",
    "me.com", "mac.com",
})

DISPOSABLE_EMAIL_DOMAINS = frozenset({
    "mailinator.com", "guerrillamail.com", "tempmail.com", "throwaway.email",
    "10minutemail.com", "temp-mail.org", "fakeinbox.com", "sharklasers.com",
    "trashmail.com",
})

EMAIL_DOMAIN_TYPOS = {
    "gmial.com": "gmail.com",
    "gmai.com": "gmail.com",
    "gmal.com": "gmail.com",
    "gamil.com": "gmail.com",
    "gnail.com": "gmail.com",
    "gmail.con": "gmail.com",
    "gmail.co": "gmail.com",
    "yaho.com": "yahoo.com",
    "yahooo.com": "yahoo.com",
    "yahoo.con": "yahoo.com",
    "hotmal.com": "hotmail.com",
    "hotmai.com": "hotmail.com",
    "hotmail.con": "hotmail.com",
    "outloo.com": "outlook.com",
    "outlok.com": "outlook.com",
    "outlook.con": "outlook.com",
}

US_STATES = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
    "PR": "Puerto Rico", "VI": "Virgin Islands", "GU": "Guam",
    "AS": "American Samoa", "MP": "Northern Mariana Islands",
}

STATE_MISSPELLINGS = {
    "CALI": "California",
    "CALIF": "California",
    "CALIFRONIA": "California",
    "NEWYORK": "New York",
    "NYC": "New York",
    "TEXS": "Texas",
    "FLORDA": "Florida",
    "FLORDIA": "Florida",
    "ILLNOIS": "Illinois",
    "MASSACHUSETS": "Massachusetts",
}

_STATES_BY_NAME = {name.upper(): name for name in US_STATES.values()}

NAME_PARTICLES = frozenset({
    "van", "von", "der", "den", "ter", "de", "del", "della", "di", "da", "du", "la", "le", "el",
})
NAME_SUFFIXES = {
    "jr": "Jr.", "jr.": "Jr.", "sr": "Sr.", "sr.": "Sr.",
    "ii": "II", "iii": "III", "iv": "IV", "phd": "PhD", "md": "MD", "esq": "Esq.",
}

COMPANY_SUFFIXES = {
    "inc": "Inc.", "inc.": "Inc.", "incorporated": "Inc.",
    "llc": "LLC", "l.l.c.": "LLC", "llp": "LLP",
    "ltd": "Ltd.", "ltd.": "Ltd.", "limited": "Ltd.",
    "corp": "Corp.", "corp.": "Corp.", "corporation": "Corp.",
    "co": "Co.", "co.": "Co.",
    "plc": "PLC", "gmbh": "GmbH", "ag": "AG",
}
COMPANY_MINOR_WORDS = frozenset({"a", "an", "the", "and", "or", "of", "for", "in", "on", "at", "to", "by"})
COMPANY_ACRONYMS = frozenset({
    "ibm", "hp", "usa", "uk", "eu", "ai", "it", "hr", "api", "aws", "saas", "crm", "erp", "b2b", "b2c",
})

_ZERO_WIDTH = re.compile("[\u200b\u200c\u200d\ufeff]")
_WHITESPACE_RUN = re.compile(r"\s+")
_NON_DIGITS = re.compile(r"\D")


@dataclass
class RowValidation:
    """Outcome of all scripts for one row."""

    row_index: int
    data: Dict[str, Any]
    changes: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def rewrite(self, column: str, value: Any) -> None:
        if self.data.get(column) != value:
            self.data[column] = value
            self.changes[column] = value


class ValidationContext:
    """
    State shared by the rows of one validation pass.

    Holds the session's field mappings and the keys seen so far for
    duplicate detection.
    """

    def __init__(self, field_mappings: Optional[Mapping[str, str]] = None):
        self.field_mappings = dict(field_mappings or {})
        self._seen: Dict[Tuple[str, str], int] = {}

    def columns_for(self, data: Mapping[str, Any], *targets: str) -> List[str]:
        return [column for column in data if resolve_target(column, self.field_mappings) in targets]

    def first_row_with(self, kind: str, key: str, row_index: int) -> Optional[int]:
        """Earlier row that used `key`, or None (and remember this row)."""
        first = self._seen.setdefault((kind, key), row_index)
        return None if first == row_index else first


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


class ValidationScript:
    """Base class; subclasses set the attributes and implement apply()."""

    id: str = ""
    name: str = ""
    order: int = 0

    def apply(self, result: RowValidation, context: ValidationContext) -> None:
        raise NotImplementedError


class WhitespaceCleanupScript(ValidationScript):
    id = "whitespace-cleanup"
    name = "Whitespace Cleanup"
    order = 1

    def apply(self, result, context):
        for column, value in list(result.data.items()):
            if not isinstance(value, str):
                continue
            cleaned = _ZERO_WIDTH.sub("", value).replace("\u00a0", " ")
            cleaned = _WHITESPACE_RUN.sub(" ", cleaned).strip()
            # Quotes wrapping the whole value are an export artefact
            if len(cleaned) > 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
                cleaned = cleaned[1:-1].strip() or cleaned
            result.rewrite(column, cleaned)


class StateNormalizationScript(ValidationScript):
    id = "state-normalization"
    name = "State Normalization"
    order = 10

    def apply(self, result, context):
        for column in context.columns_for(result.data, "state", "company.state"):
            value = _text(result.data[column])
            if not value:
                continue
            upper = value.upper()
            normalized = US_STATES.get(upper) or STATE_MISSPELLINGS.get(upper) or _STATES_BY_NAME.get(upper)
            if normalized:
                result.rewrite(column, normalized)


class EmailValidationScript(ValidationScript):
    """Requires a well-formed contact email; rejects disposable domains."""

    id = "email-validation"
    name = "Email Validation"
    order = 20

    def apply(self, result, context):
        columns = [column for column in context.columns_for(result.data, "email") if _text(result.data[column])]
        if not columns:
            result.errors.append("Missing email address")
            return

        # The last mapped column wins when building CRM properties
        column = columns[-1]
        email = _text(result.data[column]).lower()
        result.rewrite(column, email)

        if not EMAIL_PATTERN.match(email):
            result.errors.append(f"Invalid email address: {email}")
            return
        if not STRICT_EMAIL_PATTERN.match(email):
            result.warnings.append(f"Email {email} contains unusual characters")

        domain = email.rsplit("@", 1)[1]
        if domain in DISPOSABLE_EMAIL_DOMAINS:
            result.errors.append(f"Disposable email domain: {domain}")
        elif domain in PERSONAL_EMAIL_DOMAINS:
            result.warnings.append(f"Personal email domain: {domain}")
        elif domain in EMAIL_DOMAIN_TYPOS:
            result.warnings.append(f"Possible typo in email domain {domain} (did you mean {EMAIL_DOMAIN_TYPOS[domain]}?)")


class PhoneNormalizationScript(ValidationScript):
    id = "phone-normalization"
    name = "Phone Normalization"
    order = 30

    def apply(self, result, context):
        for column in context.columns_for(result.data, "phone", "mobilephone", "company.phone"):
            value = _text(result.data[column])
            if not value:
                continue
            digits = _NON_DIGITS.sub("", value)
            if len(digits) == 11 and digits.startswith("1"):
                digits = digits[1:]
            if len(digits) == 10 and not value.startswith("+"):
                result.rewrite(column, f"({digits[:3]}) {digits[3:6]}-{digits[6:]}")
            elif len(digits) < 7:
                result.warnings.append(f"Phone number {value} looks too short")
            elif len(digits) > 15:
                result.warnings.append(f"Phone number {value} looks too long")


class NameCapitalizationScript(ValidationScript):
    """Fixes ALL CAPS and all-lowercase names; mixed case is left as typed."""

    id = "name-capitalization"
    name = "Name Capitalization"
    order = 50

    def apply(self, result, context):
        for target in ("firstname", "lastname"):
            for column in context.columns_for(result.data, target):
                value = _text(result.data[column])
                if value and value in (value.upper(), value.lower()):
                    result.rewrite(column, capitalize_name(value, last_name=target == "lastname"))


def _capitalize_name_word(word: str, last_name: bool, first_word: bool) -> str:
    lower = word.lower()
    if lower in NAME_SUFFIXES:
        return NAME_SUFFIXES[lower]
    if last_name and not first_word and lower in NAME_PARTICLES:
        return lower
    if lower.startswith("mc") and len(lower) > 2:
        return "Mc" + lower[2:].capitalize()
    if lower.startswith("o'") and len(lower) > 2:
        return "O'" + lower[2:].capitalize()
    return "-".join(part.capitalize() for part in lower.split("-"))


def capitalize_name(name: str, last_name: bool = False) -> str:
    """
    >>> capitalize_name("MARY-ANN")
    'Mary-Ann'
    >>> capitalize_name("ludwig van beethoven", last_name=True)
    'Ludwig van Beethoven'
    """
    words = name.split()
    return " ".join(
        _capitalize_name_word(word, last_name, index == 0)
        for index, word in enumerate(words)
    )


class CompanyNormalizationScript(ValidationScript):
    id = "company-normalization"
    name = "Company Normalization"
    order = 60

    def apply(self, result, context):
        for column in context.columns_for(result.data, "company", "company.name"):
            value = _text(result.data[column])
            if value:
                result.rewrite(column, normalize_company_name(value))


def normalize_company_name(name: str) -> str:
    """
    >>> normalize_company_name("ACME WIDGETS INC")
    'Acme Widgets Inc.'
    >>> normalize_company_name("eBay llc")
    'eBay LLC'
    """
    words = []
    for index, word in enumerate(re.sub(r"\s*,\s*", ", ", name).split()):
        lower = word.lower()
        if lower in COMPANY_SUFFIXES and index > 0:
            words.append(COMPANY_SUFFIXES[lower])
        elif lower in COMPANY_ACRONYMS:
            words.append(lower.upper())
        elif index > 0 and lower in COMPANY_MINOR_WORDS:
            words.append(lower)
        elif word not in (word.lower(), word.upper()):
            # Mixed case such as "eBay" is intentional
            words.append(word)
        else:
            words.append(word.capitalize())
    return " ".join(words)


class DuplicateDetectionScript(ValidationScript):
    """Warns about rows repeating an email or phone number seen earlier in the pass."""

    id = "duplicate-detection"
    name = "Duplicate Detection"
    order = 100

    def apply(self, result, context):
        for kind, targets in (("email", ("email",)), ("phone", ("phone", "mobilephone"))):
            for column in context.columns_for(result.data, *targets):
                key = _text(result.data[column]).lower()
                if kind == "phone":
                    key = _NON_DIGITS.sub("", key)
                    if len(key) < 7:
                        continue
                if not key:
                    continue
                first = context.first_row_with(kind, key, result.row_index)
                if first is not None:
                    result.warnings.append(f"Duplicate {kind} {_text(result.data[column])} (first seen in row {first + 1})")


DEFAULT_SCRIPTS: Tuple[ValidationScript, ...] = tuple(sorted(
    (
        WhitespaceCleanupScript(),
        StateNormalizationScript(),
        EmailValidationScript(),
        PhoneNormalizationScript(),
        NameCapitalizationScript(),
        CompanyNormalizationScript(),
        DuplicateDetectionScript(),
    ),
    key=lambda script: script.order,
))


def run_validation_scripts(
    row_index: int,
    data: Mapping[str, Any],
    context: ValidationContext,
    scripts: Sequence[ValidationScript] = DEFAULT_SCRIPTS,
) -> RowValidation:
    """Run `scripts` in order on a copy of `data`."""
    result = RowValidation(row_index=row_index, data=dict(data))
    for script in scripts:
        script.apply(result, context)
    return result
