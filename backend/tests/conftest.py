"""
Shared fixtures.

Tests run against an in-memory SQLite database (aiosqlite) and a fake CRM
provider that records every call, so no network or Postgres is needed.
"""

import itertools
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from listsync import models  # noqa: F401
from listsync.core.interfaces.crm import CRMProvider
from listsync.db.base import Base
from listsync.db.session import create_session_maker
from listsync.integrations.hubspot.client import HubSpotAuthError
from listsync.services.pipeline.auth_guard import AuthGuard
from listsync.services.pipeline.batch_runner import BatchRunner
from listsync.services.pipeline.leases import SessionLeaseRegistry
from listsync.services.pipeline.row_processor import RowProcessor
from listsync.services.pipeline.session_store import SessionStore
from listsync.services.pipeline_log import pipeline_log


class NoDelayRateLimiter:
    """Counts waits instead of sleeping."""

    def __init__(self):
        self.calls = 0

    async def wait(self) -> None:
        self.calls += 1


class FakeCRMProvider(CRMProvider):
    """
    In-memory CRM.

    contact_errors maps an e-mail to the exception create_or_update_contact
    raises for it; auth_error_emails raise a 401-style auth error.
    """

    def __init__(self, token: Optional[str] = "test-token"):
        self.token = token
        self.companies: List[Dict[str, Any]] = []
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.contact_calls: List[str] = []
        self.contact_errors: Dict[str, Exception] = {}
        self.auth_error_emails: set = set()
        self.updated_companies: List[str] = []
        self.associations: List[tuple] = []
        self.tasks: List[Dict[str, Any]] = []
        self.reset_count = 0
        self.forced_refreshes = 0
        self._ids = itertools.count(1)

    def get_provider_name(self) -> str:
        return "Fake"

    async def get_valid_access_token(self, force_refresh: bool = False) -> Optional[str]:
        if force_refresh:
            self.forced_refreshes += 1
        return self.token

    def reset_client(self) -> None:
        self.reset_count += 1

    def add_company(self, name: str, domain: str = "") -> Dict[str, Any]:
        company = {"id": f"co-{next(self._ids)}", "name": name, "domain": domain}
        self.companies.append(company)
        return company

    async def search_companies_by_domain(self, domain: str) -> List[Dict[str, Any]]:
        return [c for c in self.companies if c["domain"] and c["domain"] == domain.lower()]

    async def search_companies_by_name(self, name: str) -> List[Dict[str, Any]]:
        return list(self.companies)

    async def create_company(self, name, domain=None, city=None, state=None) -> Dict[str, Any]:
        return self.add_company(name, (domain or "").lower())

    async def update_company(self, company_id: str, properties: Dict[str, str]) -> None:
        self.updated_companies.append(company_id)

    async def create_or_update_contact(self, properties: Dict[str, str]) -> Dict[str, Any]:
        email = properties["email"]
        self.contact_calls.append(email)
        if email in self.auth_error_emails:
            raise HubSpotAuthError("HubSpot API error: 401 - EXPIRED_AUTHENTICATION")
        if email in self.contact_errors:
            raise self.contact_errors[email]

        contact = self.contacts.get(email) or {"id": f"ct-{next(self._ids)}", "email": email}
        self.contacts[email] = contact
        return contact

    async def associate_contact_with_company(self, contact_id: str, company_id: str) -> None:
        self.associations.append((contact_id, company_id))

    async def create_task(
        self,
        subject,
        body,
        owner_id,
        priority="MEDIUM",
        associated_contact_id=None,
        associated_company_id=None,
    ) -> str:
        task_id = f"task-{next(self._ids)}"
        self.tasks.append({
            "id": task_id,
            "subject": subject,
            "owner_id": owner_id,
            "company_id": associated_company_id,
        })
        return task_id

    async def get_owners(self) -> List[Dict[str, str]]:
        return [{"id": "owner-1", "email": "owner@example.com", "name": "Olive Owner"}]


def make_rows(count: int, start: int = 0) -> List[Dict[str, Any]]:
    return [
        {"Email": f"user{i}@example.com", "First Name": f"User{i}"}
        for i in range(start, start + count)
    ]


MAPPINGS = {"Email": "email", "First Name": "firstname"}


@pytest.fixture(autouse=True)
def clear_pipeline_log():
    pipeline_log.clear()
    yield
    pipeline_log.clear()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture
def store(session_maker):
    return SessionStore(session_maker)


@pytest.fixture
def leases():
    return SessionLeaseRegistry()


@pytest.fixture
def crm():
    return FakeCRMProvider()


@pytest.fixture
def rate_limiter():
    return NoDelayRateLimiter()


@pytest.fixture
def make_runner(store, leases, rate_limiter):
    """Build a BatchRunner around any provider."""

    def factory(provider: CRMProvider, page_size: int = 50) -> BatchRunner:
        return BatchRunner(
            store=store,
            processor=RowProcessor(provider),
            auth_guard=AuthGuard(provider),
            rate_limiter=rate_limiter,
            leases=leases,
            page_size=page_size,
        )

    return factory


@pytest.fixture
def create_enriched_session(store):
    """Create a session whose rows are all enriched and ready to sync."""

    async def factory(count: int, **kwargs):
        upload = await store.create_session(
            account_id="acct-1",
            file_name=kwargs.pop("file_name", "leads.csv"),
            rows=make_rows(count),
            field_mappings=MAPPINGS,
            **kwargs,
        )
        await mark_all_enriched(store, upload.id)
        return await store.get_session(upload.id)

    return factory


async def mark_all_enriched(store: SessionStore, session_id) -> None:
    from listsync.models.upload import RowStatus, SessionStatus

    after_index = -1
    while True:
        page = await store.fetch_rows_page(session_id, [RowStatus.PENDING], after_index=after_index, limit=500)
        if not page:
            break
        for row in page:
            after_index = row.row_index
            await store.update_row_status(row.id, RowStatus.PENDING, RowStatus.VALIDATED)
            await store.update_row_status(row.id, RowStatus.VALIDATED, RowStatus.ENRICHED)
    await store.transition_session(session_id, SessionStatus.UPLOADED, SessionStatus.ENRICHED)
