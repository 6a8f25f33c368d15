"""Tests for the cross-store points ledger: earn, redeem, conservation, store accounts."""

import pytest
from pymongo.errors import DuplicateKeyError, OperationFailure

from pos_backend.application.services.points_service import PointsService, compute_points
from pos_backend.core.constants import (
    COLLECTION_GLOBAL_CUSTOMERS,
    COLLECTION_POINTS_SETTINGS,
    COLLECTION_STORE_POINTS_ACCOUNTS,
)
from pos_backend.domain.entities import PointsPolicy
from pos_backend.domain.exceptions import (
    InsufficientPointsException,
    PointsNotEarnedException,
    ResourceNotFoundException,
    ValidationException,
)
from pos_backend.infrastructure.persistence.repositories import LedgerRepository
from tests.conftest import add_store, make_settings
from tests.fakes import FakeMongoServer

POLICY = PointsPolicy(user_points_percentage=5.0, points_value_per_point=0.01)


@pytest.fixture
async def stores(directory):
    await add_store(directory, "store-a", prefix="a", name="Store A", shard_id=1)
    await add_store(directory, "store-b", prefix="b", name="Store B", shard_id=2)


@pytest.fixture
def points(ledger, directory, resolver, stores) -> PointsService:
    return PointsService(ledger, directory, resolver)


async def _customer(resolver, store_id: str, **fields) -> str:
    customers = await resolver.get_customer_model_for_store(store_id)
    doc = await customers.insert_one({"name": "Mona", **fields})
    return str(doc["_id"])


async def _assert_conserved(ledger: LedgerRepository, gcid: str) -> None:
    balance = await ledger.get_balance(gcid)
    assert balance["totalPoints"] == balance["lifetimeEarned"] - balance["lifetimeSpent"]


def test_compute_points_floors() -> None:
    assert compute_points(199.0, 5.0, POLICY) == 9


def test_compute_points_rejects_too_small_purchase() -> None:
    with pytest.raises(PointsNotEarnedException):
        compute_points(10.0, 5.0, POLICY)


def test_compute_points_enforces_minimum_purchase() -> None:
    policy = PointsPolicy(5.0, 0.01, min_purchase_amount=500)
    with pytest.raises(PointsNotEarnedException) as exc_info:
        compute_points(400.0, 5.0, policy)
    assert exc_info.value.error_code == "POINTS_NOT_EARNED"


def test_compute_points_clamps_to_maximum() -> None:
    policy = PointsPolicy(5.0, 0.01, max_points_per_transaction=50)
    assert compute_points(10_000.0, 5.0, policy) == 50


async def test_earn_creates_customer_balance_and_store_account(
    points: PointsService, ledger: LedgerRepository, resolver
) -> None:
    customer_id = await _customer(resolver, "store-a", phone=" 0100 ")

    result = await points.earn_points("store-a", customer_id, 200.0, invoice_number="INV-7")

    assert result.global_customer_id == "0100"
    assert result.points_earned == 10
    assert result.available_points == 10
    customer = await ledger.get_global_customer("0100")
    assert [s["storeId"] for s in customer["stores"]] == ["store-a"]
    account = await ledger.get_store_account("store-a")
    assert account.total_points_issued == 10
    assert account.amount_owed == pytest.approx(0.1)
    history, total = await points.get_history("0100")
    assert total == 1
    assert history[0].points == 10
    assert history[0].description == "Points earned from purchase at store-a (Invoice: INV-7)"


async def test_earn_by_prefix_records_canonical_store_id(
    points: PointsService, ledger: LedgerRepository, resolver
) -> None:
    customer_id = await _customer(resolver, "a", phone="0100")
    await points.earn_points("A", customer_id, 200.0)
    assert (await ledger.get_store_account("store-a")).total_points_issued == 10


async def test_earn_without_points_writes_nothing(
    points: PointsService, ledger: LedgerRepository, resolver
) -> None:
    customer_id = await _customer(resolver, "store-a", phone="0100")

    with pytest.raises(PointsNotEarnedException):
        await points.earn_points("store-a", customer_id, 5.0)

    assert await ledger.get_balance("0100") is None
    assert await ledger.count_transactions("0100") == 0


async def test_earn_rejects_non_positive_amount(points: PointsService) -> None:
    with pytest.raises(ValidationException):
        await points.earn_points("store-a", "x", 0)


async def test_earn_for_unknown_customer_raises(points: PointsService) -> None:
    with pytest.raises(ResourceNotFoundException):
        await points.earn_points("store-a", "64b000000000000000000000", 200.0)


async def test_earn_without_contact_details_raises(points: PointsService, resolver) -> None:
    customer_id = await _customer(resolver, "store-a")
    with pytest.raises(ValidationException):
        await points.earn_points("store-a", customer_id, 200.0)


async def test_earn_at_two_stores_links_customer_once_per_store(
    points: PointsService, ledger: LedgerRepository, resolver
) -> None:
    a_id = await _customer(resolver, "store-a", phone="0100")
    b_id = await _customer(resolver, "store-b", phone="0100")

    await points.earn_points("store-a", a_id, 200.0)
    await points.earn_points("store-a", a_id, 200.0)
    result = await points.earn_points("store-b", b_id, 400.0)

    assert result.total_points == 40
    customer = await ledger.get_global_customer("0100")
    assert sorted(s["storeId"] for s in customer["stores"]) == ["store-a", "store-b"]


async def test_earn_anywhere_redeem_anywhere_conserves_points(
    points: PointsService, ledger: LedgerRepository, resolver
) -> None:
    customer_id = await _customer(resolver, "store-a", phone="0100")

    await points.earn_points("store-a", customer_id, 1000.0)
    await _assert_conserved(ledger, "0100")
    redeemed = await points.redeem_points("store-b", 30, phone="0100", invoice_number="INV-3")
    await _assert_conserved(ledger, "0100")
    await points.earn_points("store-a", customer_id, 400.0)
    await _assert_conserved(ledger, "0100")
    await points.redeem_points("store-b", 10, global_customer_id="0100")
    await _assert_conserved(ledger, "0100")

    assert redeemed.remaining_points == 20
    assert redeemed.points_value == pytest.approx(0.3)
    balance = await points.get_balance("store-b", phone="0100")
    assert balance.total_points == 30
    assert balance.lifetime_earned == 70
    assert balance.lifetime_spent == 40

    issuer = await ledger.get_store_account("store-a")
    redeemer = await ledger.get_store_account("store-b")
    assert issuer.total_points_issued == 70
    assert issuer.net_financial_balance == pytest.approx(0.7)
    assert redeemer.total_points_redeemed == 40
    assert redeemer.net_financial_balance == pytest.approx(-0.4)
    assert redeemer.amount_owed == pytest.approx(0.4)

    history, total = await points.get_history("0100")
    assert total == 4
    assert sorted(t.points for t in history) == [-30, -10, 20, 50]
    spent = [t for t in history if t.points == -30][0]
    assert spent.description == "Points used for payment at store-b (Invoice: INV-3)"


async def test_redeem_more_than_available_changes_nothing(
    points: PointsService, ledger: LedgerRepository, resolver
) -> None:
    customer_id = await _customer(resolver, "store-a", phone="0100")
    await points.earn_points("store-a", customer_id, 200.0)
    before = await ledger.get_balance("0100")

    with pytest.raises(InsufficientPointsException) as exc_info:
        await points.redeem_points("store-b", 11, phone="0100")

    assert exc_info.value.details["available_points"] == 10
    assert await ledger.get_balance("0100") == before
    assert await ledger.count_transactions("0100") == 1
    assert await ledger.get_store_account("store-b") is None


async def test_redeem_for_customer_without_balance(points: PointsService) -> None:
    with pytest.raises(InsufficientPointsException) as exc_info:
        await points.redeem_points("store-a", 1, email="nobody@example.com")
    assert exc_info.value.details["available_points"] == 0


async def test_redeem_loses_race_to_concurrent_spend(
    points: PointsService, ledger: LedgerRepository, resolver, monkeypatch
) -> None:
    """The conditional decrement fails when the balance dropped after the check."""
    customer_id = await _customer(resolver, "store-a", phone="0100")
    await points.earn_points("store-a", customer_id, 200.0)

    async def spent_elsewhere(gcid, amount, session=None):
        return None

    monkeypatch.setattr(ledger, "debit_balance", spent_elsewhere)

    with pytest.raises(InsufficientPointsException):
        await points.redeem_points("store-b", 5, phone="0100")
    assert await ledger.count_transactions("0100") == 1


async def test_redeem_requires_identifier_and_positive_points(points: PointsService) -> None:
    with pytest.raises(ValidationException):
        await points.redeem_points("store-a", 0, phone="0100")
    with pytest.raises(ValidationException):
        await points.redeem_points("store-a", 5)


async def test_failed_store_account_write_rolls_back_earn(
    points: PointsService, ledger: LedgerRepository, resolver, server: FakeMongoServer
) -> None:
    customer_id = await _customer(resolver, "store-a", phone="0100")
    accounts = server.database("pos_main")[COLLECTION_STORE_POINTS_ACCOUNTS]
    accounts.fail_next_write = OperationFailure("WriteConflict")

    with pytest.raises(OperationFailure):
        await points.earn_points("store-a", customer_id, 200.0)

    assert server.aborted_transactions == 1
    assert await ledger.get_balance("0100") is None
    assert await ledger.count_transactions("0100") == 0


async def test_transient_write_conflict_reruns_whole_earn(
    points: PointsService, ledger: LedgerRepository, resolver, server: FakeMongoServer
) -> None:
    customer_id = await _customer(resolver, "store-a", phone="0100")
    accounts = server.database("pos_main")[COLLECTION_STORE_POINTS_ACCOUNTS]
    accounts.fail_next_write = OperationFailure(
        "WriteConflict", 112, {"errorLabels": ["TransientTransactionError"]}
    )

    result = await points.earn_points("store-a", customer_id, 200.0)

    assert result.available_points == 10
    assert server.transaction_retries == 1
    assert server.aborted_transactions == 1
    assert server.committed_transactions == 1
    assert await ledger.count_transactions("0100") == 1
    assert (await ledger.get_store_account("store-a")).total_points_issued == 10


async def test_concurrent_customer_creation_reruns_earn(
    points: PointsService, ledger: LedgerRepository, resolver, server: FakeMongoServer
) -> None:
    """A duplicate key inside the transaction aborts it; the rerun finds the record."""
    customer_id = await _customer(resolver, "store-a", phone="0100")
    customers = server.database("pos_main")[COLLECTION_GLOBAL_CUSTOMERS]
    customers.fail_next_write = DuplicateKeyError(
        "E11000 duplicate key", 11000, {"keyValue": {"globalCustomerId": "0100"}}
    )

    result = await points.earn_points("store-a", customer_id, 200.0)

    assert result.points_earned == 10
    assert server.aborted_transactions == 1
    assert server.committed_transactions == 1
    assert await ledger.count_transactions("0100") == 1
    customer = await ledger.get_global_customer("0100")
    assert [s["storeId"] for s in customer["stores"]] == ["store-a"]


async def test_duplicate_customer_is_reraised_inside_a_session(
    ledger: LedgerRepository, server: FakeMongoServer
) -> None:
    customers = server.database("pos_main")[COLLECTION_GLOBAL_CUSTOMERS]
    customers.fail_next_write = DuplicateKeyError("E11000 duplicate key", 11000)

    with pytest.raises(DuplicateKeyError):
        await ledger.get_or_create_global_customer(
            "store-a", "c1", "Mona", phone="0100", session=object()
        )


async def test_duplicate_customer_without_session_links_existing_record(
    ledger: LedgerRepository, server: FakeMongoServer
) -> None:
    await ledger.get_or_create_global_customer("store-a", "c1", "Mona", phone="0100")
    customers = server.database("pos_main")[COLLECTION_GLOBAL_CUSTOMERS]
    customers.fail_next_write = DuplicateKeyError("E11000 duplicate key", 11000)

    customer = await ledger.get_or_create_global_customer("store-b", "c9", "Mona", phone="0100")

    assert sorted(s["storeId"] for s in customer["stores"]) == ["store-a", "store-b"]


async def test_blank_phone_falls_back_to_email(ledger: LedgerRepository) -> None:
    customer = await ledger.get_or_create_global_customer(
        "store-a", "c1", "Mona", phone="   ", email=" Mona@Example.com "
    )

    assert customer["globalCustomerId"] == "mona@example.com"
    assert customer["identifierType"] == "email"
    assert customer["phone"] is None


async def test_ledger_runs_without_transactions_when_disabled(
    registry, directory, resolver, stores, server: FakeMongoServer
) -> None:
    ledger = LedgerRepository(registry, make_settings(ledger_use_transactions=False))
    points = PointsService(ledger, directory, resolver)
    customer_id = await _customer(resolver, "store-a", phone="0100")

    await points.earn_points("store-a", customer_id, 200.0)

    assert server.committed_transactions == 0
    assert (await ledger.get_balance("0100"))["availablePoints"] == 10


async def test_balance_of_unknown_customer_is_zero(points: PointsService) -> None:
    balance = await points.get_balance("store-a", phone="0199")
    assert balance.total_points == 0
    assert balance.available_points == 0
    assert balance.points_value_per_point == 0.01


async def test_balance_by_local_customer_id(points: PointsService, resolver) -> None:
    customer_id = await _customer(resolver, "store-a", email="Mona@Example.com")
    await points.earn_points("store-a", customer_id, 200.0)

    balance = await points.get_balance("store-a", local_customer_id=customer_id)

    assert balance.global_customer_id == "mona@example.com"
    assert balance.available_points == 10


async def test_store_settings_override_global_policy(
    points: PointsService, resolver, server: FakeMongoServer
) -> None:
    await server.database("pos_main")[COLLECTION_POINTS_SETTINGS].insert_one(
        {"storeId": "store-a", "userPointsPercentage": 10, "pointsValuePerPoint": 0.05}
    )
    customer_id = await _customer(resolver, "store-a", phone="0100")

    result = await points.earn_points("store-a", customer_id, 200.0)

    assert result.points_earned == 20
    assert (await points.get_store_account("store-a")).points_value_per_point == 0.05
    assert (await points.get_points_policy(None)).user_points_percentage == 5.0


async def test_list_store_accounts_orders_by_amount_owed(points: PointsService, resolver) -> None:
    a_id = await _customer(resolver, "store-a", phone="0100")
    b_id = await _customer(resolver, "store-b", phone="0111")
    await points.earn_points("store-a", a_id, 200.0)
    await points.earn_points("store-b", b_id, 2000.0)

    accounts = await points.list_store_accounts()

    assert [a.store_id for a in accounts] == ["store-b", "store-a"]


async def test_store_account_missing_raises(points: PointsService) -> None:
    with pytest.raises(ResourceNotFoundException):
        await points.get_store_account("store-a")
