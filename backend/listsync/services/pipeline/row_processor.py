"""
Row Processor.

Pushes one row into the CRM: match or create its company, create or update
the contact, associate both, and open a review task for new companies.

Ordinary failures come back as RowOutcome.error. Auth-class failures are
re-raised so the batch runner's AuthGuard can react.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from listsync.core.interfaces.crm import CRMProvider
from listsync.services.pipeline.auth_guard import ErrorClass, classify_error
from listsync.services.pipeline.company_matching import NO_MATCH, find_best_company_match
from listsync.services.pipeline.field_mapping import build_crm_properties
from listsync.services.pipeline.progress import MatchedCompany, RowOutcome

logger = logging.getLogger(__name__)


def _first(*values: Optional[str]) -> str:
    for value in values:
        if value:
            return value
    return ""


def _review_task_body(company: Dict[str, Any], domain: str, city: str, state: str) -> str:
    return (
        "A new company was created during list import.\n\n"
        f"Company: {company.get('name')}\n"
        f"Domain: {domain or 'N/A'}\n"
        f"City: {city or 'N/A'}\n"
        f"State: {state or 'N/A'}\n\n"
        "Please review and verify the company information."
    )


class RowProcessor:
    """Syncs single rows against a CRM provider."""

    def __init__(self, provider: CRMProvider):
        self.provider = provider

    async def process(
        self,
        row_index: int,
        merged_data: Mapping[str, Any],
        field_mappings: Mapping[str, str] | None = None,
        task_assignee_id: Optional[str] = None,
    ) -> RowOutcome:
        contact_props, company_props = build_crm_properties(merged_data, field_mappings)
        email = contact_props.get("email", "")

        try:
            return await self._sync(row_index, contact_props, company_props, task_assignee_id)
        except Exception as e:
            if classify_error(e) == ErrorClass.AUTH_EXPIRED:
                raise
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            logger.warning(f"⚠️ Row {row_index} failed: {message}")
            return RowOutcome.failed(row_index, message, contact_email=email)

    async def _sync(
        self,
        row_index: int,
        contact_props: Dict[str, str],
        company_props: Dict[str, str],
        task_assignee_id: Optional[str],
    ) -> RowOutcome:
        if not contact_props.get("email"):
            raise ValueError("Email is required to create a HubSpot contact")

        company_name = _first(company_props.get("name"), company_props.get("company"), contact_props.get("company"))
        domain = _first(company_props.get("domain"), company_props.get("website"), contact_props.get("website"))
        city = _first(company_props.get("city"), contact_props.get("city"))
        state = _first(company_props.get("state"), contact_props.get("state"))

        match = await find_best_company_match(
            self.provider,
            email=contact_props["email"],
            company_name=company_name,
            domain=domain,
        )

        company = match.company
        company_created = False
        task_created = False

        if company is not None:
            # Bring the matched company up to date with this row's values
            try:
                await self.provider.update_company(company["id"], company_props)
            except Exception as e:
                if classify_error(e) == ErrorClass.AUTH_EXPIRED:
                    raise
                logger.warning(f"⚠️ Failed to update company {company['id']}: {e}")
        elif company_name:
            company = await self.provider.create_company(
                name=company_name,
                domain=domain or None,
                city=city or None,
                state=state or None,
            )
            company_created = True

            if task_assignee_id:
                await self.provider.create_task(
                    subject=f"Review new company: {company.get('name')}",
                    body=_review_task_body(company, domain, city, state),
                    owner_id=task_assignee_id,
                    priority="MEDIUM",
                    associated_company_id=company["id"],
                )
                task_created = True

        contact = await self.provider.create_or_update_contact(contact_props)

        if company is not None:
            await self.provider.associate_contact_with_company(contact["id"], company["id"])

        return RowOutcome(
            row_index=row_index,
            contact_id=contact.get("id"),
            contact_email=contact.get("email") or contact_props["email"],
            matched_company=(
                MatchedCompany(id=company["id"], name=company.get("name"), domain=company.get("domain"))
                if company is not None
                else None
            ),
            match_confidence=match.confidence if not company_created else 0.0,
            match_type=match.match_type if not company_created else NO_MATCH,
            task_created=task_created,
            company_created=company_created,
        )
