from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from portal_schema import portal, seed
from sqlalchemy import Connection, Engine
from sqlmodel import SQLModel, create_engine
from sqlmodel.pool import StaticPool

from custodian.infrastructure.database.database import (
    enable_sqlite_foreign_keys,
    get_connection,
)
from custodian.main import app


@pytest.fixture(name="engine")
def engine_fixture() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    portal.create_all(engine)
    SQLModel.metadata.create_all(engine)
    seed(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="connection")
def connection_fixture(engine: Engine) -> Iterator[Connection]:
    with engine.connect() as connection:
        yield connection


@pytest.fixture(name="client")
def client_fixture(engine: Engine):
    def get_connection_override():
        with engine.connect() as connection:
            yield connection

    app.dependency_overrides[get_connection] = get_connection_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
