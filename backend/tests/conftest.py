"""
Rollout Planner - Test Fixtures
================================

Shared pytest fixtures for all tests.
"""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rollout_planner.api.deps import (
    get_case_policy_probe,
    get_license_service,
)
from rollout_planner.api.main import app
from rollout_planner.core.compiler.expander import SpecExpander
from rollout_planner.core.compiler.probe import CasePolicyProbe
from rollout_planner.core.database import Base, get_db
from rollout_planner.core.license import LicenseService
from rollout_planner.core.models import (
    Backup,
    Database,
    DataSource,
    DataSourceType,
    Engine,
    Environment,
    Instance,
    Project,
    Sheet,
)
from rollout_planner.core.store import RolloutStore


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


# ==========================================================================
# Collaborators
# ==========================================================================

class StaticCasePolicyProbe(CasePolicyProbe):
    """Answers lower_case_table_names without a server; `error` makes it fail."""

    def __init__(self, value: int = 0, error: Optional[Exception] = None):
        super().__init__(timeout=1.0)
        self.value = value
        self.error = error
        self.calls = 0

    async def fetch_lower_case_table_names(self, data_source: DataSource) -> int:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a clean database session for each test.

    Creates all tables before test, drops after.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestingSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def probe() -> StaticCasePolicyProbe:
    return StaticCasePolicyProbe()


@pytest.fixture
def license_service() -> LicenseService:
    return LicenseService(enabled_features=[])


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    probe: StaticCasePolicyProbe,
    license_service: LicenseService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database and collaborator overrides.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_case_policy_probe] = lambda: probe
    app.dependency_overrides[get_license_service] = lambda: license_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def store(db_session: AsyncSession) -> RolloutStore:
    return RolloutStore(db_session)


@pytest.fixture
def expander(
    store: RolloutStore,
    license_service: LicenseService,
    probe: StaticCasePolicyProbe,
) -> SpecExpander:
    return SpecExpander(store, license_service, probe)


# ==========================================================================
# Metadata Fixtures
# ==========================================================================

@dataclass
class Metadata:
    """Seeded environments, instances, databases, sheets and backups."""

    test: Environment
    prod: Environment
    project: Project
    other_project: Project
    mysql_test: Instance
    mysql_prod: Instance
    postgres_prod: Instance
    orders_test: Database
    orders_prod: Database
    legacy_test: Database
    sheet1: Sheet
    sheet2: Sheet
    nightly: Backup


def make_instance(
    resource_id: str,
    engine: Engine,
    environment: Environment,
    admin_username: Optional[str] = "admin",
) -> Instance:
    data_sources = []
    if admin_username is not None:
        data_sources.append(
            DataSource(
                type=DataSourceType.ADMIN,
                username=admin_username,
                host="127.0.0.1",
                port="3306",
            )
        )
    return Instance(
        resource_id=resource_id,
        title=resource_id.replace("-", " ").title(),
        engine=engine,
        environment=environment,
        data_sources=data_sources,
    )


@pytest_asyncio.fixture
async def metadata(db_session: AsyncSession) -> Metadata:
    """
    Two environments, one project with databases in both, and a second
    project owning a database on the test instance.
    """
    test = Environment(resource_id="test", title="Test", order=0)
    prod = Environment(resource_id="prod", title="Prod", order=1)
    project = Project(resource_id="shop", title="Shop")
    other_project = Project(resource_id="legacy", title="Legacy")

    mysql_test = make_instance("mysql-test", Engine.MYSQL, test)
    mysql_prod = make_instance("mysql-prod", Engine.MYSQL, prod)
    postgres_prod = make_instance("pg-prod", Engine.POSTGRES, prod, admin_username="bytebase")

    orders_test = Database(instance=mysql_test, project=project, environment=test, name="orders")
    orders_prod = Database(instance=mysql_prod, project=project, environment=prod, name="orders")
    legacy_test = Database(instance=mysql_test, project=other_project, environment=test, name="legacy")

    sheet1 = Sheet(project=project, creator_id=1, name="add index", statement="CREATE INDEX idx ON t(a);")
    sheet2 = Sheet(project=project, creator_id=1, name="add column", statement="ALTER TABLE t ADD b INT;")
    nightly = Backup(database=orders_test, name="nightly")

    db_session.add_all([
        test, prod, project, other_project,
        mysql_test, mysql_prod, postgres_prod,
        orders_test, orders_prod, legacy_test,
        sheet1, sheet2, nightly,
    ])
    await db_session.commit()

    return Metadata(
        test=test,
        prod=prod,
        project=project,
        other_project=other_project,
        mysql_test=mysql_test,
        mysql_prod=mysql_prod,
        postgres_prod=postgres_prod,
        orders_test=orders_test,
        orders_prod=orders_prod,
        legacy_test=legacy_test,
        sheet1=sheet1,
        sheet2=sheet2,
        nightly=nightly,
    )
