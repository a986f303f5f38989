# tests/test_concurrency.py
import threading
from decimal import Decimal

from chatcart.exceptions import DomainError, InsufficientStockError

from conftest import PHONE


def run_concurrently(make_service, calls):
    """Run each call on its own thread and session, released together by a barrier."""
    barrier = threading.Barrier(len(calls))
    results, errors = [], []
    guard = threading.Lock()

    def worker(call):
        service = make_service()
        barrier.wait()
        try:
            result = call(service)
        except Exception as e:
            with guard:
                errors.append(e)
        else:
            with guard:
                results.append(result)

    threads = [threading.Thread(target=worker, args=(c,)) for c in calls]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    return results, errors


class TestConcurrentMutations:
    def test_no_lost_updates(self, make_service):
        n = 8
        results, errors = run_concurrently(
            make_service,
            [lambda svc: svc.add_item(PHONE, 10, None, 1)] * n,
        )

        assert errors == []
        assert len(results) == n

        cart = make_service().get_cart(PHONE)
        assert len(cart.items) == 1
        assert cart.items[0].quantity == n
        assert cart.total == Decimal("9.99") * n

    def test_single_cart_per_customer(self, make_service):
        results, errors = run_concurrently(
            make_service,
            [lambda svc: svc.get_cart(PHONE)] * 6,
        )

        assert errors == []
        assert len({cart.id for cart in results}) == 1
        assert len(make_service().repo.find_by_customer(PHONE)) == 1

    def test_stock_cannot_be_over_committed(self, make_service, catalog):
        catalog.put(70, "15.00", name="Last one", stock=1)

        results, errors = run_concurrently(
            make_service,
            [lambda svc: svc.add_item(PHONE, 70, None, 1)] * 2,
        )

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], InsufficientStockError)
        assert isinstance(errors[0], DomainError)

        cart = make_service().get_cart(PHONE)
        assert cart.items[0].quantity == 1

    def test_different_customers_are_independent(self, make_service):
        phones = [f"+4850020000{i}" for i in range(4)]
        results, errors = run_concurrently(
            make_service,
            [lambda svc, p=p: svc.add_item(p, 10, None, 2) for p in phones],
        )

        assert errors == []
        assert sorted(c.customer_phone for c in results) == sorted(phones)
        assert all(c.total == Decimal("19.98") for c in results)
