"""
Company matching against existing CRM companies.

Order of attempts: the row's domain, the domain of the contact e-mail
(unless it is a free-mail provider), then a fuzzy comparison of the company
name with the CRM's name-search results.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from listsync.core.interfaces.crm import CRMProvider
from listsync.utils.fuzzy_matching import DEFAULT_MATCH_THRESHOLD, fuzzy_match_company_name

logger = logging.getLogger(__name__)

FREE_MAIL_MARKERS = ("gmail", "yahoo", "hotmail")

MATCH_EXACT = "exact"
MATCH_FUZZY = "fuzzy"
NO_MATCH = "no_match"


@dataclass
class CompanyMatch:
    company: Optional[Dict[str, Any]]
    match_type: str
    confidence: float


def email_domain(email: str) -> str:
    """Domain part of an e-mail address, "" if there is none."""
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].strip().lower()


def is_free_mail_domain(domain: str) -> bool:
    return any(marker in domain for marker in FREE_MAIL_MARKERS)


async def find_best_company_match(
    provider: CRMProvider,
    email: str = "",
    company_name: str = "",
    domain: str = "",
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> CompanyMatch:
    """
    Find the CRM company a contact belongs to.

    Returns:
        CompanyMatch with match_type exact (1.0 for the row's domain, 0.9
        for the e-mail domain), fuzzy (name similarity), or no_match (0.0)
    """
    if domain:
        matches = await provider.search_companies_by_domain(domain)
        if matches:
            return CompanyMatch(company=matches[0], match_type=MATCH_EXACT, confidence=1.0)

    contact_domain = email_domain(email)
    if contact_domain and not is_free_mail_domain(contact_domain):
        matches = await provider.search_companies_by_domain(contact_domain)
        if matches:
            return CompanyMatch(company=matches[0], match_type=MATCH_EXACT, confidence=0.9)

    if company_name:
        candidates = await provider.search_companies_by_name(company_name)
        company, similarity = fuzzy_match_company_name(company_name, candidates, threshold)
        if company is not None:
            return CompanyMatch(company=company, match_type=MATCH_FUZZY, confidence=similarity)

    return CompanyMatch(company=None, match_type=NO_MATCH, confidence=0.0)
