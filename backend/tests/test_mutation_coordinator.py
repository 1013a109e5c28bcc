"""
Concurrency checks for the mutation coordinator.
"""
import threading
from decimal import Decimal

from app.database import SessionLocal
from app.models import Transaction
from app.schemas import TransactionUpdate
from app.services.event_publisher import ConnectionManager, EventPublisher
from app.services.mutation_coordinator import MutationCoordinator


class SlowFirstPublisher(EventPublisher):
    """Records published amounts; the first publish stalls until `release` is set or times out."""

    def __init__(self, release: threading.Event):
        super().__init__(ConnectionManager(), backend="local")
        self.release = release
        self.first_publishing = threading.Event()
        self.sent = []

    def publish(self, user_id, event_type, data=None):
        if not self.first_publishing.is_set():
            self.first_publishing.set()
            self.release.wait(timeout=0.5)
        self.sent.append(data["amount"])


def test_concurrent_updates_publish_in_commit_order(alice) -> None:
    created = alice.post(
        "/api/transactions",
        json={"date": "2025-04-02", "amount": "0.50", "type": "expense"},
    ).json()
    user_id = alice.user["id"]

    second_done = threading.Event()
    publisher = SlowFirstPublisher(release=second_done)
    first_db, second_db = SessionLocal(), SessionLocal()

    def first_writer():
        MutationCoordinator(first_db, publisher, user_id).update_transaction(
            created["id"], TransactionUpdate(amount=Decimal("1.00"))
        )

    def second_writer():
        MutationCoordinator(second_db, publisher, user_id).update_transaction(
            created["id"], TransactionUpdate(amount=Decimal("2.00"))
        )
        second_done.set()

    first = threading.Thread(target=first_writer)
    first.start()
    assert publisher.first_publishing.wait(timeout=5)

    # The first writer has committed and is mid-publish; the second writer must wait its turn
    second = threading.Thread(target=second_writer)
    second.start()
    first.join(timeout=5)
    second.join(timeout=5)
    first_db.close()
    second_db.close()

    check_db = SessionLocal()
    try:
        stored = check_db.query(Transaction).filter(Transaction.id == created["id"]).one().amount
    finally:
        check_db.close()

    assert stored == Decimal("2.00")
    assert publisher.sent == ["1.00", "2.00"]
    assert publisher.sent[-1] == str(stored)


def test_ordering_lock_is_per_user() -> None:
    publisher = EventPublisher(ConnectionManager(), backend="local")

    assert publisher.ordering_lock(1) is publisher.ordering_lock(1)
    assert publisher.ordering_lock(1) is not publisher.ordering_lock(2)
