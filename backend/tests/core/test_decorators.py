import asyncio

import pytest
from neo4j.exceptions import ServiceUnavailable
from sqlalchemy.exc import DatabaseError, OperationalError, ProgrammingError

from playergraph.core.decorators import input_validation, store_query
from playergraph.core.exceptions import (
    ExternalStoreError,
    ExternalStoreUnreachableError,
    InvalidInputError,
    PlayerNotFoundError,
)


class FakeRepository:
    def __init__(self, error=None, delay=0.0, query_timeout=None):
        self.error = error
        self.delay = delay
        self.query_timeout = query_timeout

    @store_query("graph")
    async def read(self):
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return "ok"


class TestStoreQuery:
    """Test cases for store error translation"""

    @pytest.mark.asyncio
    async def test_passes_result_through(self):
        assert await FakeRepository().read() == "ok"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            ServiceUnavailable("no route"),
            OperationalError("SELECT 1", {}, Exception("connection refused")),
            ConnectionRefusedError("refused"),
        ],
    )
    async def test_unreachable_errors(self, error):
        with pytest.raises(ExternalStoreUnreachableError) as exc_info:
            await FakeRepository(error=error).read()

        assert exc_info.value.store == "graph"
        assert exc_info.value.operation == "read"
        assert exc_info.value.original_error is error

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            DatabaseError("MATCH (p)", {}, Exception("constraint")),
            ProgrammingError("SELECT nope", {}, Exception("syntax")),
        ],
    )
    async def test_query_errors(self, error):
        with pytest.raises(ExternalStoreError) as exc_info:
            await FakeRepository(error=error).read()

        assert not isinstance(exc_info.value, ExternalStoreUnreachableError)

    @pytest.mark.asyncio
    async def test_timeout_from_instance(self):
        with pytest.raises(ExternalStoreUnreachableError, match="did not answer"):
            await FakeRepository(delay=1.0, query_timeout=0.01).read()

    @pytest.mark.asyncio
    async def test_service_exceptions_are_not_wrapped(self):
        error = PlayerNotFoundError("ghost")

        with pytest.raises(PlayerNotFoundError):
            await FakeRepository(error=error).read()

    @pytest.mark.asyncio
    async def test_unrelated_errors_propagate(self):
        with pytest.raises(KeyError):
            await FakeRepository(error=KeyError("x")).read()


def at_most_ten(value):
    if value > 10:
        raise InvalidInputError("too big", field="limit", value=value)


class TestInputValidation:
    @input_validation(
        validate_non_empty=["name"],
        validate_non_negative=["days"],
        custom_validators={"limit": at_most_ten},
    )
    async def lookup(self, name, days=0, limit=None):
        return name

    @pytest.mark.asyncio
    async def test_valid_input(self):
        assert await self.lookup("alice", days=3, limit=5) == "alice"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   ", None])
    async def test_blank_name(self, name):
        with pytest.raises(InvalidInputError) as exc_info:
            await self.lookup(name)

        assert exc_info.value.field == "name"

    @pytest.mark.asyncio
    async def test_negative_number(self):
        with pytest.raises(InvalidInputError, match="must not be negative"):
            await self.lookup("alice", days=-1)

    @pytest.mark.asyncio
    async def test_custom_validator(self):
        with pytest.raises(InvalidInputError, match="too big"):
            await self.lookup("alice", limit=50)
