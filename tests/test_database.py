import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError

from app.core.database import TransactionManager, is_serialization_failure, with_db_transaction
from app.core.exceptions import NotFoundError, TransactionFailedError
from app.catalog.models import Room


class FakeDriverError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def driver_error(sqlstate):
    return DBAPIError("UPDATE billing_ledgers ...", {}, FakeDriverError(sqlstate))


@pytest.mark.parametrize(
    "exc, expected",
    [
        (driver_error("40001"), True),
        (driver_error("40P01"), True),
        (driver_error("23505"), False),
        (ValueError("boom"), False),
    ],
)
def test_is_serialization_failure(exc, expected):
    assert is_serialization_failure(exc) is expected


async def test_serialization_failure_becomes_retryable_error(session):
    async def _operation(session):
        raise driver_error("40001")

    with pytest.raises(TransactionFailedError) as exc_info:
        await TransactionManager(session).execute(_operation)

    assert exc_info.value.status_code == 503
    assert exc_info.value.details["retryable"] is True


async def test_failed_operation_rolls_back_everything(session):
    async def _operation(session):
        session.add(Room(name="Salle C", capacity=10))
        await session.flush()
        raise NotFoundError("Level", 99)

    with pytest.raises(NotFoundError):
        await with_db_transaction(session, _operation)

    async def _count(session):
        result = await session.execute(select(func.count(Room.id)))
        return result.scalar()

    assert await with_db_transaction(session, _count) == 0


async def test_successful_operation_commits(session, session_factory):
    async def _operation(session):
        room = Room(name="Salle D", capacity=8)
        session.add(room)
        await session.flush()
        return room.id

    room_id = await with_db_transaction(session, _operation)

    async with session_factory() as other:
        room = await other.get(Room, room_id)
        assert room.name == "Salle D"
