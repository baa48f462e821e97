"""
Fuzzy Matching Utilities for Company Resolution.

Levenshtein-based similarity used to decide whether a company found by a
CRM name search is the company named in an uploaded row.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Minimum similarity for a name search hit to count as a match
DEFAULT_MATCH_THRESHOLD = 0.7

_SEPARATORS = re.compile(r"[_\-\s]+")
_NON_ALNUM = re.compile(r"[^a-z0-9 ]")


def normalize_name(value: str) -> str:
    """
    Lowercase, collapse separators and drop punctuation.

    Examples:
        >>> normalize_name("  Acme-Corp, Inc. ")
        'acme corp inc'
    """
    text = _SEPARATORS.sub(" ", value.lower().strip())
    return _NON_ALNUM.sub("", text).strip()


def levenshtein_distance(s1: str, s2: str) -> int:
    """
    Calculate Levenshtein Distance between two strings (case-insensitive).

    The minimum number of single-character insertions, deletions or
    substitutions needed to turn one string into the other.

    Examples:
        >>> levenshtein_distance("kitten", "sitting")
        3
        >>> levenshtein_distance("Northwind Traders", "Northwind Tradres")
        2
    """
    s1 = s1.lower()
    s2 = s2.lower()

    if s1 == s2:
        return 0
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    # Two-row dynamic programming table
    previous = list(range(len(s2) + 1))
    for i, char1 in enumerate(s1, start=1):
        current = [i]
        for j, char2 in enumerate(s2, start=1):
            cost = 0 if char1 == char2 else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current

    return previous[-1]


def fuzzy_similarity(s1: str, s2: str) -> float:
    """
    Similarity score between two strings, 0.0 (different) to 1.0 (identical).

    Levenshtein distance normalized by the length of the longer string.
    """
    max_len = max(len(s1), len(s2))
    if max_len == 0:
        return 1.0
    return 1.0 - (levenshtein_distance(s1, s2) / max_len)


def fuzzy_match_company_name(
    search_name: str,
    companies: List[Dict[str, Any]],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> Tuple[Optional[Dict[str, Any]], float]:
    """
    Pick the company whose name is most similar to `search_name`.

    Args:
        search_name: Company name from the uploaded row
        companies: Candidates with at least a "name" key
        threshold: Minimum similarity to accept

    Returns:
        (best company, similarity) or (None, 0.0) if nothing reaches threshold

    Example:
        >>> fuzzy_match_company_name("Acme Corp", [{"id": "1", "name": "ACME Corp."}])
        ({'id': '1', 'name': 'ACME Corp.'}, 1.0)
    """
    target = normalize_name(search_name or "")
    if not target or not companies:
        return None, 0.0

    best: Optional[Dict[str, Any]] = None
    best_score = 0.0
    for company in companies:
        score = fuzzy_similarity(target, normalize_name(company.get("name") or ""))
        if score > best_score:
            best, best_score = company, score

    if best is None or best_score < threshold:
        return None, 0.0

    logger.debug(f"Fuzzy matching '{search_name}' -> '{best.get('name')}' (similarity: {best_score:.2f})")
    return best, round(best_score, 4)
