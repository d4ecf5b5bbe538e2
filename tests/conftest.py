import os
import tempfile

# Settings are read at import time, so the environment has to be in place first
_TMP = tempfile.mkdtemp(prefix="school-api-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'app.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CLEANUP_INTERVAL_MINUTES"] = "0"
os.environ["FAST2SMS_API_KEY"] = ""
os.environ["SCHOOL_TIMEZONE"] = "Asia/Kolkata"

from datetime import timedelta
from types import SimpleNamespace

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from school_api.core.database import Base, get_db
from school_api.core.dates import utcnow
from school_api.core.security import create_access_token
from school_api.main import app
from school_api.models import attendance, otp, school, student, teacher, trusted_device, user  # noqa: F401
from school_api.models.school import School, SchoolClass, Section
from school_api.models.student import ParentStudent, Student
from school_api.models.teacher import Teacher, TeacherAssignment
from school_api.models.user import Role, User
from school_api.services.device_service import DeviceService
from school_api.services.otp_security import OtpSecurityService
from school_api.services.providers import get_device_service, get_otp_security, get_sms_service


class FakeSms:
    """Captures issued codes instead of sending them."""

    enabled = True

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def send_otp(self, phone_e164: str, otp: str) -> bool:
        self.sent.append((phone_e164, otp))
        return True

    def last_code(self, phone: str) -> str:
        for sent_phone, code in reversed(self.sent):
            if sent_phone == phone:
                return code
        raise AssertionError(f"no OTP sent to {phone}")


class FakeClock:
    def __init__(self):
        self.current = utcnow()

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
async def engine(db_url):
    # one connection per session; writers queue on the SQLite lock instead of failing
    eng = create_async_engine(db_url, poolclass=NullPool, connect_args={"timeout": 30})
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory, seed):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(session_factory):
    """
    Two schools plus the platform school.

    School S1: class 10, sections SEC1 (S1, S2) and SEC2 (S3).
    School S2: class 10, section SEC_B (S4).
    TEACHER1 is assigned to SEC1 only, TEACHER2 has a profile and no sections.
    PARENT1 is linked to S1; PARENT_B (school S2) to S4.
    """
    async with session_factory() as session:
        session.add_all([
            School(id="platform", code="PLATFORM", name="Platform"),
            School(id="S1", code="SCH1", name="Green Valley School"),
            School(id="S2", code="SCH2", name="Blue Hill School"),
        ])
        await session.flush()
        session.add_all([
            SchoolClass(id="C10", school_id="S1", name="10"),
            SchoolClass(id="C10B", school_id="S2", name="10"),
        ])
        await session.flush()
        session.add_all([
            Section(id="SEC1", school_id="S1", class_id="C10", name="A"),
            Section(id="SEC2", school_id="S1", class_id="C10", name="B"),
            Section(id="SEC_B", school_id="S2", class_id="C10B", name="A"),
        ])
        await session.flush()
        session.add_all([
            Student(id="S1", school_id="S1", class_id="C10", section_id="SEC1", name="Aarav", roll_no="1"),
            Student(id="S2", school_id="S1", class_id="C10", section_id="SEC1", name="Diya", roll_no="2"),
            Student(id="S3", school_id="S1", class_id="C10", section_id="SEC2", name="Kabir", roll_no="1"),
            Student(id="S4", school_id="S2", class_id="C10B", section_id="SEC_B", name="Meera", roll_no="1"),
        ])
        session.add_all([
            User(id="SUPER", phone="+919000000000", name="Root", role=Role.SUPER_ADMIN, school_id="platform"),
            User(id="ADMIN1", phone="+919000000001", name="Admin One", role=Role.SCHOOL_ADMIN, school_id="S1"),
            User(id="TEACHER1", phone="+919000000002", name="Teacher One", role=Role.TEACHER, school_id="S1"),
            User(id="TEACHER2", phone="+919000000003", name="Teacher Two", role=Role.TEACHER, school_id="S1"),
            User(id="PARENT1", phone="+919000000004", name="Parent One", role=Role.PARENT, school_id="S1"),
            User(id="PARENT_B", phone="+919000000005", name="Parent B", role=Role.PARENT, school_id="S2"),
            User(id="ADMIN_B", phone="+919000000006", name="Admin B", role=Role.SCHOOL_ADMIN, school_id="S2"),
        ])
        await session.flush()
        session.add_all([
            Teacher(id="T1", user_id="TEACHER1", school_id="S1"),
            Teacher(id="T2", user_id="TEACHER2", school_id="S1"),
        ])
        await session.flush()
        session.add_all([
            TeacherAssignment(teacher_id="T1", section_id="SEC1"),
            ParentStudent(parent_id="PARENT1", student_id="S1"),
            ParentStudent(parent_id="PARENT_B", student_id="S4"),
        ])
        await session.commit()

    return SimpleNamespace(
        school="S1",
        other_school="S2",
        section="SEC1",
        unassigned_section="SEC2",
        other_section="SEC_B",
    )


# ── Services with test-friendly knobs ─────────────────────────────────
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def otp_security(clock):
    return OtpSecurityService(
        max_attempts=5,
        rate_limit_max_requests=5,
        rate_limit_window_minutes=15,
        clock=clock,
    )


@pytest.fixture
def devices(clock):
    return DeviceService(validity_days=30, clock=clock)


# ── Tokens ────────────────────────────────────────────────────────────
_USERS = {
    "SUPER": ("+919000000000", Role.SUPER_ADMIN, "platform"),
    "ADMIN1": ("+919000000001", Role.SCHOOL_ADMIN, "S1"),
    "TEACHER1": ("+919000000002", Role.TEACHER, "S1"),
    "TEACHER2": ("+919000000003", Role.TEACHER, "S1"),
    "PARENT1": ("+919000000004", Role.PARENT, "S1"),
    "PARENT_B": ("+919000000005", Role.PARENT, "S2"),
    "ADMIN_B": ("+919000000006", Role.SCHOOL_ADMIN, "S2"),
}


def auth_headers(user_id: str, **extra) -> dict[str, str]:
    phone, role, school_id = _USERS[user_id]
    token = create_access_token(user_id, phone, role.value, school_id)
    return {"Authorization": f"Bearer {token}", **extra}


# ── HTTP client ───────────────────────────────────────────────────────
@pytest.fixture
async def client(session_factory, seed, sms, otp_security, devices):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_sms_service] = lambda: sms
    app.dependency_overrides[get_otp_security] = lambda: otp_security
    app.dependency_overrides[get_device_service] = lambda: devices

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return auth_headers
