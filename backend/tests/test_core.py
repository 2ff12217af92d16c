from __future__ import annotations

import time
from decimal import Decimal

import pytest
from sqlmodel import Session, func, select

from storefront.api import deps
from storefront.core import db as core_db
from storefront.core import snowflake
from storefront.core.config import Settings, parse_cors
from storefront.core.redis import get_redis
from storefront.models import Product
from storefront.services.notifier import Notifier


def test_snowflake_ids_are_unique_and_increasing():
    sf = snowflake.Snowflake(node_id=3)
    ids = [sf.next_id() for _ in range(1000)]
    assert len(set(ids)) == 1000
    assert ids == sorted(ids)
    assert (ids[0] >> 12) & 0x3FF == 3


def test_snowflake_edge_cases(monkeypatch):
    with pytest.raises(ValueError):
        snowflake.Snowflake(node_id=1024)

    # Small clock drift is waited out.
    sf = snowflake.Snowflake(node_id=1)
    sf._last_ts = 1_704_067_201_000  # type: ignore[attr-defined]
    monkeypatch.setattr(snowflake.Snowflake, "_now_ms", staticmethod(lambda: 1_704_067_200_999))
    monkeypatch.setattr(snowflake.Snowflake, "_wait_until", classmethod(lambda cls, t: t))
    assert sf.next_id() > 0

    # A large backwards jump is refused.
    monkeypatch.setattr(snowflake.Snowflake, "_now_ms", staticmethod(lambda: 1_704_067_100_000))
    with pytest.raises(RuntimeError):
        sf.next_id()


def test_snowflake_wait_until_loop(monkeypatch):
    calls = [0, 0, 5]

    def fake_now_ms() -> int:
        return calls.pop(0) if calls else 5

    monkeypatch.setattr(snowflake.Snowflake, "_now_ms", staticmethod(fake_now_ms))
    monkeypatch.setattr(time, "sleep", lambda _: None)
    assert snowflake.Snowflake._wait_until(5) == 5


def test_settings_validation_paths():
    assert parse_cors("http://a.test, http://b.test") == ["http://a.test", "http://b.test"]
    assert parse_cors(["a"]) == ["a"]
    with pytest.raises(ValueError):
        parse_cors(123)

    # Non-local environments reject default secrets.
    with pytest.raises(ValueError):
        Settings(
            ENVIRONMENT="production",
            SECRET_KEY="not-changethis",
            MTA_API_KEY="changethis",
            POSTGRES_SERVER="localhost",
            POSTGRES_USER="postgres",
        )

    s = Settings(
        POSTGRES_SERVER="db",
        POSTGRES_USER="shop",
        POSTGRES_PASSWORD="pw",
        POSTGRES_DB="shop",
    )
    assert str(s.SQLALCHEMY_DATABASE_URI) == "postgresql+psycopg://shop:pw@db:5432/shop"


def test_get_db_generator_uses_engine_override(engine, monkeypatch):
    monkeypatch.setattr(deps, "engine", engine)
    gen = deps.get_db()
    session = next(gen)
    session.exec(select(1))
    gen.close()


def test_init_db_seeds_catalog_once(db, engine):
    core_db.init_db(db)
    core_db.init_db(db)

    count = db.exec(select(func.count()).select_from(Product)).one()
    assert count == len(core_db.SAMPLE_PRODUCTS)
    cars = db.exec(select(Product).where(Product.name == "Legendary Cars Pack")).one()
    assert cars.stock == 100
    assert cars.price == Decimal("24.99")


def test_get_redis_is_shared():
    # The client connects lazily; nothing is sent here.
    assert get_redis() is get_redis()


def test_notifier_without_smtp_only_logs():
    assert Notifier().send(to="player@example.com", subject="hi", body="there") is False


def test_prestart_and_seed_scripts(engine, monkeypatch):
    from storefront import backend_pre_start, initial_data

    monkeypatch.setattr(backend_pre_start, "engine", engine)
    monkeypatch.setattr(initial_data, "engine", engine)

    backend_pre_start.main()
    initial_data.main()

    with Session(engine) as session:
        assert session.exec(select(func.count()).select_from(Product)).one() == len(
            core_db.SAMPLE_PRODUCTS
        )
        for product in session.exec(select(Product)).all():
            session.delete(product)
        session.commit()
