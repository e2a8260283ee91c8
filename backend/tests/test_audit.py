"""Tests for the audit trail helper."""

from sqlalchemy import update

from models.log import Log
from models.product import Product
from utils.audit import write_log


class TestWriteLog:

    def test_entry_is_committed(self, db_session, test_user):
        entry = write_log(db_session, user_id=test_user.id, action="STOCK_RECONCILE", resource="products",
                          resource_id=3, ip="127.0.0.1", meta={"stock": 40})
        db_session.rollback()

        stored = db_session.query(Log).filter(Log.id == entry.id).one()
        assert stored.status == "SUCCESS"
        assert stored.meta == {"stock": 40}

    def test_fail_entry_survives_rolled_back_operation(self, db_session, test_user, test_product):
        db_session.execute(update(Product).where(Product.id == test_product.id).values(stock=0))
        db_session.rollback()
        write_log(db_session, user_id=test_user.id, action="MOVEMENT_CREATE", resource="movements", status="FAIL")

        assert db_session.query(Log).filter(Log.status == "FAIL").count() == 1
        assert db_session.query(Product).filter(Product.id == test_product.id).one().stock == 50

    def test_missing_meta_is_stored_empty(self, db_session, test_user):
        entry = write_log(db_session, user_id=test_user.id, action="PRODUCT_DELETE", resource="products")
        assert entry.meta == {}
