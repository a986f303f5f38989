# tests/test_cart_repo.py
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from chatcart.domain.cart import CartItem, CartStatus, utcnow
from chatcart.repos.cart_repo import CartRepo
from chatcart.repos.coupon_usage_repo import CouponUsageRepo
from chatcart.services.lock_service import LocalLockService, cart_lock_key

from conftest import PHONE, hours


@pytest.fixture()
def session(database):
    db = database.session_factory()
    yield db
    db.close()


@pytest.fixture()
def locks():
    return LocalLockService()


@pytest.fixture()
def repo(session, locks):
    return CartRepo(session, locks)


def new_cart(repo, phone=PHONE, expires_in=72):
    cart_id = repo.create(phone, hours(expires_in))
    repo.commit()
    return cart_id


class TestMapping:
    def test_round_trip_keeps_types(self, repo):
        cart_id = new_cart(repo)
        item = CartItem(product_id=10, quantity=2, price_at_add=Decimal("9.99"), product_name="Mug")
        repo.update_locked(cart_id, {"items": [item], "total": Decimal("19.98")})
        repo.commit()

        cart = repo.find(cart_id)
        assert cart.items == [item]
        assert cart.total == Decimal("19.98")
        assert cart.status == CartStatus.ACTIVE
        assert cart.expires_at.tzinfo is not None

    def test_find_missing(self, repo):
        assert repo.find(999) is None


class TestActiveLookup:
    def test_find_active_ignores_expired(self, repo):
        cart_id = new_cart(repo)
        repo.update_locked(cart_id, {"expires_at": hours(-1)})
        repo.commit()

        assert repo.find_active_by_customer(PHONE) is None
        assert repo.find_active_by_customer_for_update(PHONE) is None
        assert repo.find_active_by_customer_for_update(PHONE, include_expired=True).id == cart_id

    def test_unique_active_cart_per_phone(self, repo, session):
        new_cart(repo)
        with pytest.raises(IntegrityError):
            repo.create(PHONE, hours(72))
        session.rollback()

    def test_inactive_carts_do_not_block_a_new_one(self, repo):
        first = new_cart(repo)
        repo.update_locked(first, {"status": CartStatus.CONVERTED})
        repo.commit()

        assert new_cart(repo) != first


class TestFindOrCreate:
    def test_creates_then_returns_same_cart(self, repo, locks):
        created = repo.find_or_create_for_update(PHONE, hours(72))
        repo.commit()
        again = repo.find_or_create_for_update(PHONE, hours(72))
        repo.commit()

        assert created.id == again.id
        assert not locks.is_locked(cart_lock_key(PHONE))

    def test_expired_cart_is_flipped_and_replaced(self, repo):
        stale = new_cart(repo)
        repo.update_locked(stale, {"expires_at": hours(-1)})
        repo.commit()

        fresh = repo.find_or_create_for_update(PHONE, hours(72))
        repo.commit()

        assert fresh.id != stale
        assert repo.find(stale).status == CartStatus.EXPIRED

    def test_update_reports_missing_row(self, repo):
        assert repo.update(12345, {"coupon_code": "X"}) is False


class TestRecovery:
    def test_mark_recovered_is_idempotent(self, repo):
        cart_id = new_cart(repo)
        repo.update_locked(cart_id, {"status": CartStatus.ABANDONED, "total": Decimal("40.00")})
        repo.commit()

        assert repo.mark_recovered(cart_id, 501) is True
        repo.commit()
        assert repo.mark_recovered(cart_id, 502) is False
        repo.commit()

        cart = repo.find(cart_id)
        assert cart.status == CartStatus.CONVERTED
        assert cart.recovered is True
        assert cart.recovered_order_id == 501
        assert cart.recovered_revenue == Decimal("40.00")

    def test_recovery_stats(self, repo):
        recovered = new_cart(repo, phone="+111")
        repo.update_locked(recovered, {"status": CartStatus.ABANDONED, "total": Decimal("30.00")})
        repo.mark_recovered(recovered, 1)
        lost = new_cart(repo, phone="+222")
        repo.update_locked(lost, {"status": CartStatus.ABANDONED})
        new_cart(repo, phone="+333")
        repo.commit()

        stats = repo.recovery_stats(utcnow() - timedelta(days=1), utcnow() + timedelta(days=1))

        assert stats["total_abandoned"] == 2
        assert stats["recovered_count"] == 1
        assert stats["recovered_revenue"] == Decimal("30.00")
        assert stats["recovery_rate"] == 50.0


class TestSchedulerHooks:
    def test_mark_abandoned_only_from_active(self, repo):
        cart_id = new_cart(repo)
        assert repo.mark_abandoned(cart_id) is True
        assert repo.mark_abandoned(cart_id) is False
        repo.commit()
        assert repo.find(cart_id).status == CartStatus.ABANDONED

    def test_find_inactive_skips_empty_and_recent(self, repo):
        item = CartItem(product_id=10, quantity=1, price_at_add=Decimal("1.00"))
        idle = new_cart(repo, phone="+111")
        repo.update_locked(idle, {"items": [item], "updated_at": hours(-3)})
        empty_idle = new_cart(repo, phone="+222")
        repo.update_locked(empty_idle, {"updated_at": hours(-3)})
        recent = new_cart(repo, phone="+333")
        repo.update_locked(recent, {"items": [item]})
        repo.commit()

        assert [c.id for c in repo.find_inactive(hours=1)] == [idle]

    def test_reminders_go_out_in_sequence(self, repo):
        cart_id = new_cart(repo)
        repo.update_locked(cart_id, {"status": CartStatus.ABANDONED, "updated_at": hours(-30)})
        repo.commit()

        assert [c.id for c in repo.find_due_for_reminder(1, delay_hours=1)] == [cart_id]
        assert repo.find_due_for_reminder(2, delay_hours=24) == []

        assert repo.mark_reminder_sent(cart_id, 1) is True
        repo.commit()

        assert repo.find_due_for_reminder(1, delay_hours=1) == []
        assert [c.id for c in repo.find_due_for_reminder(2, delay_hours=24)] == [cart_id]
        assert repo.find(cart_id).reminders_sent() == 1

    def test_reminder_number_is_whitelisted(self, repo):
        cart_id = new_cart(repo)
        assert repo.mark_reminder_sent(cart_id, 4) is False
        assert repo.find_due_for_reminder(0, delay_hours=1) == []

    def test_find_abandoned(self, repo):
        cart_id = new_cart(repo)
        repo.update_locked(cart_id, {"status": CartStatus.ABANDONED, "updated_at": hours(-30)})
        repo.commit()

        assert [c.id for c in repo.find_abandoned(hours=24)] == [cart_id]
        assert repo.find_abandoned(hours=48) == []


class TestSweeps:
    def test_expire_stale_in_batches(self, repo):
        ids = [new_cart(repo, phone=f"+10{i}") for i in range(3)]
        for cart_id in ids:
            repo.update_locked(cart_id, {"expires_at": hours(-1)})
        keep = new_cart(repo, phone="+200")
        repo.commit()

        assert len(repo.find_expired()) == 3
        assert repo.expire_stale(batch_size=2) == 2
        assert repo.expire_stale(batch_size=2) == 1
        assert repo.expire_stale(batch_size=2) == 0
        repo.commit()

        assert repo.find(keep).status == CartStatus.ACTIVE
        assert all(repo.find(i).status == CartStatus.EXPIRED for i in ids)

    def test_purge_only_deletes_expired(self, repo):
        gone = new_cart(repo, phone="+101")
        repo.update_locked(gone, {"status": CartStatus.EXPIRED})
        kept = new_cart(repo, phone="+102")
        repo.commit()

        assert repo.purge_expired(batch_size=10) == 1
        repo.commit()
        assert repo.find(gone) is None
        assert repo.find(kept) is not None


class TestReporting:
    def test_history_and_converted_value(self, repo):
        first = new_cart(repo)
        repo.update_locked(first, {"status": CartStatus.CONVERTED, "total": Decimal("12.50")})
        repo.commit()
        second = new_cart(repo)
        repo.update_locked(second, {"status": CartStatus.CONVERTED, "total": Decimal("7.50")})
        repo.commit()
        third = new_cart(repo)

        assert {c.id for c in repo.find_by_customer(PHONE)} == {first, second, third}
        assert len(repo.find_by_customer(PHONE, limit=2)) == 2
        assert repo.converted_value_by_customer(PHONE) == Decimal("20.00")
        assert repo.converted_value_by_customer("+999") == Decimal("0")


class TestCouponUsageLedger:
    def test_record_is_duplicate_safe(self, session):
        ledger = CouponUsageRepo(session)

        assert ledger.record(7, PHONE, 500) is True
        assert ledger.record(7, PHONE, 500) is False
        assert ledger.record(7, PHONE, 501) is True
        session.commit()

        assert ledger.count_for_phone(7, PHONE) == 2
        assert ledger.count_for_phone(7, "+999") == 0
        assert ledger.count_for_phone(8, PHONE) == 0
