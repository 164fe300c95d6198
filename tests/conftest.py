import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOG_FORMAT", "text")

from datetime import date, time
from decimal import Decimal
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.pool import StaticPool

from app.core.database import Base, build_engine, build_session_factory, get_session
from app.core.limits import limiter
from app.catalog.models import Day, Level, Room, StaffRole, StaffUser, TimeSlot
from app.scheduling.models import ResourceBooking, ResourceKind, Wave, WaveSchedule, WaveStatus
from app.enrollment.schemas.enrollments import StudentInfo
from app.main import app

STAFF_HEADERS = {"X-User-Id": "1", "X-User-Role": "admin"}


def _configure_sqlite(engine):
    """
    Let pysqlite/aiosqlite emit BEGIN itself so SAVEPOINT and rollback
    behave like a server database, and enforce foreign keys.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture
async def engine():
    engine = build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    _configure_sqlite(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def catalog(session):
    """
    One admin, one teacher, a 2-seat room, two days, two slots and level L1
    (registration 20000, tuition 150000, one book at 10000).
    """
    admin = StaffUser(id=1, first_name="Hery", last_name="Rakoto", role=StaffRole.admin)
    teacher = StaffUser(
        id=2, first_name="Voahangy", last_name="Rasoa", role=StaffRole.teacher
    )
    other_teacher = StaffUser(
        id=3, first_name="Naina", last_name="Andria", role=StaffRole.teacher
    )
    room = Room(name="Salle A", capacity=2)
    other_room = Room(name="Salle B", capacity=15)
    monday = Day(name="Lundi", display_order=1)
    tuesday = Day(name="Mardi", display_order=2)
    morning = TimeSlot(label="Matin", start_time=time(8, 0), end_time=time(10, 0))
    afternoon = TimeSlot(label="Après-midi", start_time=time(14, 0), end_time=time(16, 0))
    level = Level(
        code="L1",
        name="Niveau 1",
        registration_fee=Decimal("20000"),
        tuition_fee=Decimal("150000"),
        book_fee=Decimal("10000"),
        required_book_count=1,
        duration_months=2,
    )

    session.add_all(
        [admin, teacher, other_teacher, room, other_room, monday, tuesday, morning, afternoon, level]
    )
    await session.commit()

    return SimpleNamespace(
        admin=admin,
        teacher=teacher,
        other_teacher=other_teacher,
        room=room,
        other_room=other_room,
        monday=monday,
        tuesday=tuesday,
        morning=morning,
        afternoon=afternoon,
        level=level,
    )


async def make_wave(
    session,
    catalog,
    name="Vague 1",
    capacity_max=None,
    status=WaveStatus.planned,
    room=None,
    teacher=None,
    slots=None,
):
    """Insert a wave directly, with its schedule and bookings"""
    wave = Wave(
        name=name,
        level_id=catalog.level.id,
        room_id=room.id if room else None,
        teacher_id=teacher.id if teacher else None,
        start_date=date(2026, 11, 2),
        capacity_max=capacity_max,
        status=status,
    )
    session.add(wave)
    await session.flush()

    for day, slot in slots or [(catalog.monday, catalog.morning)]:
        session.add(WaveSchedule(wave_id=wave.id, day_id=day.id, time_slot_id=slot.id))
        if wave.is_open and room:
            session.add(
                ResourceBooking(
                    resource_kind=ResourceKind.room,
                    resource_id=room.id,
                    day_id=day.id,
                    time_slot_id=slot.id,
                    wave_id=wave.id,
                )
            )
        if wave.is_open and teacher:
            session.add(
                ResourceBooking(
                    resource_kind=ResourceKind.teacher,
                    resource_id=teacher.id,
                    day_id=day.id,
                    time_slot_id=slot.id,
                    wave_id=wave.id,
                )
            )

    await session.commit()
    return wave


def student_info(phone="034 12 345 67", first_name="Rija", last_name="Randria"):
    return StudentInfo(first_name=first_name, last_name=last_name, phone=phone)


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    limiter.enabled = False

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    limiter.enabled = True
