from decimal import Decimal
from typing import Generator

import pytest

from tiffin_table import config, crud, schemas
from tiffin_table.client import SessionRegistry
from tiffin_table.db import init_db, make_engine, make_session_factory
from tiffin_table.main import app, get_db, get_hub, get_registry, get_session_factory
from tiffin_table.realtime import RealtimeHub, bind_change_feed
from tiffin_table.store import Store


@pytest.fixture(autouse=True)
def reset_config():
    config.reset_config()
    yield
    config.reset_config()


@pytest.fixture(scope="function")
def hub() -> RealtimeHub:
    return RealtimeHub()


@pytest.fixture(scope="function")
def session_factory(tmp_path, hub):
    # A file-backed SQLite DB so every session gets its own connection
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    factory = make_session_factory(engine)
    bind_change_feed(factory, hub)
    yield factory
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def store(session_factory) -> Store:
    return Store(session_factory)


@pytest.fixture(scope="function")
def client(session_factory, store, hub):
    registry = SessionRegistry(store, hub)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_hub] = lambda: hub
    app.dependency_overrides[get_registry] = lambda: registry
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    registry.close_all()
    app.dependency_overrides.clear()


# -------------------- seed helpers --------------------

def make_user(db, email="asha@example.com", password="secret1", full_name="Asha", phone=None, role=schemas.Role.user):
    return crud.create_profile(
        db,
        schemas.SignUp(email=email, password=password, full_name=full_name, phone=phone),
        role=role,
    )


def make_item(db, name="Chicken Biryani", price="200", category="mains", **extra):
    return crud.create_menu_item(
        db,
        schemas.MenuItemCreate(name=name, price=Decimal(price), category=category, **extra),
    )


@pytest.fixture
def user(db_session):
    return make_user(db_session)


@pytest.fixture
def admin(db_session):
    return make_user(db_session, email="admin@example.com", password="adminpass", full_name="Admin", role=schemas.Role.admin)


@pytest.fixture
def menu(db_session):
    return [
        make_item(db_session, "Chicken Biryani", "200", "mains", description="Aromatic basmati rice with tender meat"),
        make_item(db_session, "Comfort Khichuri Bowl", "140", "snacks", description="Lentils and rice"),
        make_item(db_session, "Avocado Toast Supreme", "180", "breakfast", is_featured=True),
        make_item(db_session, "Masala Chai", "40", "cafe"),
    ]
