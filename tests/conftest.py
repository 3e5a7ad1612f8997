"""
Pytest configuration and fixtures
"""
from types import SimpleNamespace
from typing import AsyncGenerator, Optional
from uuid import UUID
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from httpx import AsyncClient, ASGITransport

from signposting.main import app
from signposting.core.database import get_db
from signposting.core.enums import ActionKey, NodeType
from signposting.core.security import security
from signposting.models.base import Base
from signposting.models.surgery import Surgery
from signposting.models.user import User, UserRole
from signposting.schemas.workflow import AnswerOptionCreate, NodeCreate, TemplateCreate
from signposting.services.approval_service import approval_service
from signposting.services.template_service import template_service


@pytest.fixture(scope="function")
async def db_engine(tmp_path):
    """Create test database engine backed by a throwaway SQLite file"""
    import signposting.models  # noqa: F401  register all tables

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'signposting-test.db'}",
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Session factory configured like the application one"""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client; every request gets its own session"""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _add(db_session: AsyncSession, obj):
    db_session.add(obj)
    await db_session.commit()
    await db_session.refresh(obj)
    return obj


@pytest.fixture(scope="function")
async def test_surgery(db_session: AsyncSession) -> Surgery:
    """Create test surgery with workflows switched on"""
    return await _add(db_session, Surgery(
        name="Riverside Medical Centre",
        slug="riverside-medical",
        is_active=True,
        workflows_enabled=True,
    ))


@pytest.fixture(scope="function")
async def other_surgery(db_session: AsyncSession) -> Surgery:
    """Second surgery, for isolation checks"""
    return await _add(db_session, Surgery(
        name="Hillside Surgery",
        slug="hillside-surgery",
        is_active=True,
        workflows_enabled=True,
    ))


@pytest.fixture(scope="function")
async def super_admin(db_session: AsyncSession) -> User:
    """Create global admin user"""
    return await _add(db_session, User(
        email="superadmin@example.com",
        full_name="Super Admin",
        role=UserRole.SUPER_ADMIN,
        surgery_id=None,
        is_active=True,
    ))


@pytest.fixture(scope="function")
async def surgery_admin(db_session: AsyncSession, test_surgery: Surgery) -> User:
    """Create practice admin of test_surgery"""
    return await _add(db_session, User(
        email="admin@riverside.example.com",
        full_name="Practice Admin",
        role=UserRole.SURGERY_ADMIN,
        surgery_id=test_surgery.id,
        is_active=True,
    ))


@pytest.fixture(scope="function")
async def staff_user(db_session: AsyncSession, test_surgery: Surgery) -> User:
    """Create reception staff member of test_surgery"""
    return await _add(db_session, User(
        email="reception@riverside.example.com",
        full_name="Reception Staff",
        role=UserRole.STANDARD,
        surgery_id=test_surgery.id,
        is_active=True,
    ))


@pytest.fixture(scope="function")
async def second_staff_user(db_session: AsyncSession, test_surgery: Surgery) -> User:
    """Another staff member of test_surgery"""
    return await _add(db_session, User(
        email="admin-team@riverside.example.com",
        full_name="Admin Team",
        role=UserRole.STANDARD,
        surgery_id=test_surgery.id,
        is_active=True,
    ))


@pytest.fixture(scope="function")
async def other_surgery_admin(db_session: AsyncSession, other_surgery: Surgery) -> User:
    """Practice admin of other_surgery"""
    return await _add(db_session, User(
        email="admin@hillside.example.com",
        full_name="Hillside Admin",
        role=UserRole.SURGERY_ADMIN,
        surgery_id=other_surgery.id,
        is_active=True,
    ))


def _headers_for(user: User) -> dict:
    token = security.create_access_token(
        user_id=user.id,
        email=user.email,
        role=user.role,
        surgery_id=user.surgery_id,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def auth_headers():
    """Build Authorization headers for a user"""
    return _headers_for


@pytest.fixture(scope="function")
def make_clinic_letters(db_session: AsyncSession, super_admin: User):
    """
    Build the Clinic Letters workflow:

        N1 QUESTION "Is this urgent?" (start)
            Yes -> N2 END FORWARD_TO_GP
            No  -> N3 END FILE_WITHOUT_FORWARDING
    """
    async def _make(
        surgery_id: Optional[UUID] = None,
        actor: Optional[User] = None,
        approve: bool = True,
        name: str = "Clinic Letters",
    ) -> SimpleNamespace:
        actor = actor or super_admin
        template = await template_service.create_template(
            db_session, TemplateCreate(name=name, surgery_id=surgery_id), actor
        )
        n1 = await template_service.create_node(
            db_session,
            template.id,
            NodeCreate(node_type="QUESTION", title="Is this urgent?", is_start=True),
            actor,
        )
        n2 = await template_service.create_node(
            db_session,
            template.id,
            NodeCreate(node_type="END", title="Forward to GP", action_key=ActionKey.FORWARD_TO_GP.value),
            actor,
        )
        n3 = await template_service.create_node(
            db_session,
            template.id,
            NodeCreate(node_type=NodeType.END.value, title="File it", action_key="FILE_WITHOUT_FORWARDING"),
            actor,
        )
        yes = await template_service.create_answer_option(
            db_session, n1.id, AnswerOptionCreate(label="Yes", next_node_id=n2.id), actor
        )
        no = await template_service.create_answer_option(
            db_session, n1.id, AnswerOptionCreate(label="No", next_node_id=n3.id), actor
        )
        if approve:
            template = await approval_service.approve(db_session, template.id, actor)
        return SimpleNamespace(template=template, n1=n1, n2=n2, n3=n3, yes=yes, no=no)

    return _make
