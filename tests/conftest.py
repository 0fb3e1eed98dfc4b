"""
Pytest configuration and fixtures
"""

import io
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from openpyxl import Workbook
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ingestion.auth import ApiKeyAuth, BearerTokenAuth, TokenManager, TokenStore
from ingestion.client import ApiClient
from ingestion.transport import RetryPolicy
from models import Base
from models.base import ProviderType
from schemas.tenant import TenantConfig

# In-memory SQLite; a single shared connection keeps the schema alive
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

NEXQUARE_HOST = "https://school.nexquare.test"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def nexquare_tenant() -> TenantConfig:
    return TenantConfig(
        id="tenant_nq",
        provider=ProviderType.NEXQUARE,
        name="Nexquare Test School Group",
        domain_url="school.nexquare.test",
        client_id="client-123",
        client_secret="secret-456",
    )


@pytest.fixture
def managebac_tenant() -> TenantConfig:
    return TenantConfig(
        id="tenant_mb",
        provider=ProviderType.MANAGEBAC,
        domain_url="https://myschool.managebac.com",
        api_key="mb-key",
    )


async def no_sleep(_):
    return None


@pytest.fixture
def no_retry_policy() -> RetryPolicy:
    """Retry policy that never waits"""
    return RetryPolicy(max_attempts=3, base_delay=0, sleep=no_sleep)


@pytest.fixture
def nexquare_client(no_retry_policy):
    """Factory: ApiClient for a Nexquare tenant backed by an httpx.MockTransport handler"""
    def make(tenant, handler, token_store=None):
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        tokens = TokenManager(token_store if token_store is not None else TokenStore(), http, no_retry_policy)
        return ApiClient(tenant, http, BearerTokenAuth(tokens), no_retry_policy)
    return make


@pytest.fixture
def managebac_client(no_retry_policy):
    def make(tenant, handler):
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ApiClient(tenant, http, ApiKeyAuth(), no_retry_policy)
    return make


@pytest.fixture
def build_xlsx():
    return xlsx_bytes


def xlsx_bytes(rows, sheet_title="Sheet1") -> bytes:
    """Build an .xlsx workbook in memory"""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title
    for row in rows:
        sheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


ASSESSMENT_HEADER = [
    "School Name", "Region Name", "Student Name", "Register Number", "Student Status",
    "Grade Name", "Section Name", "Class Name", "Academic Year", "Subject ID",
    "Subject Name", "Term ID", "Term Name", "Component Name", "Component Value",
    "Max Value", "Data Type", "Calculation Method", "Mark Grade Name", "Mark Rubric Name",
]


def assessment_row(register, grade="10", subject="Mathematics", component="Final Exam", value="87"):
    return [
        "Test School", "North", f"Student {register}", register, "Active",
        grade, "A", f"{grade}A", "2024", "SUB-1",
        subject, "T1", "Term 1", component, value,
        100, "Numeric", "Average", "A", "Standard",
    ]


@pytest.fixture
def assessment_export():
    """Factory: header plus one export row per (register, grade, subject, component)"""
    def make(*rows):
        return [ASSESSMENT_HEADER, *(assessment_row(*row) for row in rows)]
    return make


@pytest.fixture
def mock_oneroster_students():
    """OneRoster student payload"""
    return {
        "users": [
            {
                "sourcedId": "stu-1",
                "identifier": "REG-001",
                "givenName": "Amina",
                "familyName": "Khan",
                "email": "amina@example.com",
                "status": "active",
                "grades": ["10"],
                "dateLastModified": "2024-01-15T10:00:00Z",
            },
            {
                "sourcedId": "stu-2",
                "identifier": "REG-002",
                "givenName": "Leo",
                "familyName": "Marsh",
                "status": "active",
                "metadata": {"currentGrade": "12"},
            },
        ]
    }
