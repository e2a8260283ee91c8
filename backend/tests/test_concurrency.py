"""Concurrent exits against the same product never overdraw it."""

import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models.product import Product
from models.stock import StockMovement, StockSnapshot
from models.users import User
from services import movement_recorder as recorder
from utils.errors import InsufficientStock


@pytest.fixture
def file_engine(tmp_path):
    """Shared on-disk database so each thread gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seeded(file_engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    with Session() as db:
        user = User(email="picker@example.com", role="WAREHOUSE")
        db.add(user)
        db.flush()
        product = Product(name="Pallet", price=5.0, stock=50, user_id=user.id)
        db.add(product)
        db.flush()
        db.add(StockSnapshot(product_id=product.id, current_stock=50, version=0))
        db.commit()
        return Session, product.id, user.id


def test_two_exits_of_thirty_from_fifty(seeded):
    Session, product_id, user_id = seeded
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def worker():
        with Session() as db:
            barrier.wait()
            try:
                movement = recorder.record_with_retry(db, product_id, 30, "exit", user_id, retries=5)
                result = ("ok", movement.resulting_balance)
            except InsufficientStock as exc:
                result = ("insufficient", exc.available)
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == [("insufficient", 20), ("ok", 20)]

    with Session() as db:
        product = db.query(Product).filter(Product.id == product_id).one()
        snapshot = db.query(StockSnapshot).filter(StockSnapshot.product_id == product_id).one()
        assert product.stock == 20
        assert snapshot.current_stock == 20
        assert snapshot.version == product.stock_version == 1
        assert db.query(StockMovement).count() == 1


def test_many_small_exits_add_up(seeded):
    Session, product_id, user_id = seeded
    barrier = threading.Barrier(5)
    errors = []

    def worker():
        with Session() as db:
            barrier.wait()
            try:
                for _ in range(4):
                    recorder.record_with_retry(db, product_id, 1, "exit", user_id, retries=10)
            except Exception as exc:  # collected for the assertion below
                errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    with Session() as db:
        product = db.query(Product).filter(Product.id == product_id).one()
        balances = sorted(m.resulting_balance for m in db.query(StockMovement).all())
        assert product.stock == 30
        assert balances == list(range(30, 50))
