"""
Tests for the synchronization service and scheduler.
"""

from datetime import datetime
from unittest.mock import patch

import pytest
from bson import ObjectId
from sqlalchemy import func, select

from pos_shared.utils.exceptions import StoreUnavailableError
from pos_api.models import Branch, Product, SyncEntryStatus, SyncLog, SyncOutboxEntry
from pos_api.services.sync import SyncRunStatus, SyncScheduler, SyncService
from pos_api.stores.local import LocalStore
from pos_api.stores.mapping import local_marker


class TestSyncUp:
    """Push of unsynced local rows."""

    def test_push_mirrors_rows_parent_first(self, sync_service, remote_db, db_session, seed_branch, seed_products):
        report = sync_service.sync_up()

        assert report.pushed == 3
        assert report.failed == 0

        db_session.expire_all()
        branch = db_session.get(Branch, seed_branch.id)
        assert branch.synced is True
        assert ObjectId.is_valid(branch.remote_id)

        remote_branch = remote_db["branches"].find_one({"branchCode": "MAIN"})
        assert str(remote_branch["_id"]) == branch.remote_id
        assert remote_branch["settings"]["taxRate"] == 10

        remote_product = remote_db["products"].find_one({"sku": "SKU-A"})
        assert remote_product["branch"] == remote_branch["_id"]
        assert remote_product["stock"] == 10
        assert remote_product["isAvailable"] is True

    def test_push_is_idempotent(self, sync_service, remote_db, seed_branch, seed_products):
        sync_service.sync_up()
        second = sync_service.sync_up()

        assert second.pushed == 0
        assert remote_db["products"].count_documents({}) == 2

    def test_push_drains_backlog_larger_than_batch(
        self, session_factory, remote, remote_db, online_monitor, seed_branch, seed_products
    ):
        service = SyncService(session_factory, remote, online_monitor, batch_size=1)

        first = service.sync_up()
        second = service.sync_up()

        assert first.pushed == 3
        assert second.pushed == 0
        assert remote_db["products"].count_documents({}) == 2

    def test_write_during_push_stays_unsynced(
        self, sync_service, remote, remote_db, order_service, db_session, seed_branch, seed_products
    ):
        """A stock change committed while the row is in flight is pushed on the next run."""
        product_a, _ = seed_products
        original_insert = remote.insert
        sold = []

        def insert_while_selling(entity, data, session=None):
            if entity == "products" and data.get("sku") == "SKU-A" and not sold:
                sold.append(
                    order_service.create_order(
                        local_marker(seed_branch.id),
                        {"items": [{"product": local_marker(product_a.id), "quantity": 2}], "orderType": "takeaway"},
                    )
                )
            return original_insert(entity, data, session=session)

        with patch.object(remote, "insert", side_effect=insert_while_selling):
            sync_service.sync_up()

        db_session.expire_all()
        row = db_session.get(Product, product_a.id)
        assert row.stock == 8
        assert row.synced is False
        assert row.remote_id is not None
        assert remote_db["products"].find_one({"sku": "SKU-A"})["stock"] == 10

        retry = sync_service.sync_up()

        assert retry.pushed >= 1
        assert remote_db["products"].count_documents({"sku": "SKU-A"}) == 1
        assert remote_db["products"].find_one({"sku": "SKU-A"})["stock"] == 8
        db_session.expire_all()
        assert db_session.get(Product, product_a.id).synced is True

    def test_push_adopts_remote_document_with_same_natural_key(
        self, sync_service, remote_db, db_session, seed_branch, seed_remote
    ):
        sync_service.sync_up()

        db_session.expire_all()
        assert db_session.get(Branch, seed_branch.id).remote_id == seed_remote["branch"]
        assert remote_db["branches"].count_documents({}) == 1

    def test_children_deferred_while_parent_fails(self, sync_service, remote, db_session, seed_branch, seed_products):
        original_insert = remote.insert

        def flaky_insert(entity, data, session=None):
            if entity == "branches":
                raise StoreUnavailableError("insert branches", "timed out")
            return original_insert(entity, data, session=session)

        with patch.object(remote, "insert", side_effect=flaky_insert):
            report = sync_service.sync_up()

        assert report.pushed == 0
        assert report.failed == 1
        assert report.deferred == 2
        assert report.status == SyncRunStatus.PARTIAL

        db_session.expire_all()
        entry = db_session.scalar(select(SyncOutboxEntry).where(SyncOutboxEntry.entity == "branches"))
        assert entry.attempts == 1
        assert "timed out" in entry.last_error

        retry = sync_service.sync_up()
        assert retry.pushed == 3
        assert retry.deferred == 0

    def test_local_delete_reaches_remote(self, sync_service, session_factory, remote_db, seed_branch, seed_products):
        sync_service.sync_up()
        product_a, _ = seed_products

        LocalStore(session_factory).delete("products", {"_id": local_marker(product_a.id)})
        assert remote_db["products"].count_documents({}) == 2

        report = sync_service.sync_up()

        assert report.deleted == 1
        assert remote_db["products"].count_documents({}) == 1
        assert remote_db["products"].find_one({"sku": "SKU-A"}) is None


class TestSyncDown:
    """Pull of remote documents into the local mirror."""

    def test_pull_creates_local_rows(self, sync_service, db_session, seed_remote):
        report = sync_service.sync_down()

        assert report.pulled == 6
        assert report.skipped == 0

        product = db_session.scalar(select(Product).where(Product.remote_id == seed_remote["product_a"]))
        assert product.synced is True
        assert product.stock == 10
        branch = db_session.scalar(select(Branch).where(Branch.remote_id == seed_remote["branch"]))
        assert product.branch_id == branch.id
        assert branch.tax_rate == 10.0

    def test_pull_is_idempotent(self, sync_service, seed_remote):
        sync_service.sync_down()
        second = sync_service.sync_down()

        assert second.pulled == 0
        assert second.unchanged == 6

    def test_pull_applies_remote_changes(self, sync_service, remote_db, db_session, seed_remote):
        sync_service.sync_down()
        remote_db["products"].update_one(
            {"_id": ObjectId(seed_remote["product_a"])},
            {"$set": {"price": 6.5, "updatedAt": datetime(2024, 1, 2, 9, 0)}},
        )

        report = sync_service.sync_down()

        assert report.pulled == 1
        db_session.expire_all()
        product = db_session.scalar(select(Product).where(Product.remote_id == seed_remote["product_a"]))
        assert product.price == 6.5

    def test_pull_overwrites_unpushed_local_edit(self, sync_service, session_factory, db_session, seed_remote):
        sync_service.sync_down()
        LocalStore(session_factory).update("products", {"_id": seed_remote["product_a"]}, {"price": 7.25})

        sync_service.sync_down()

        db_session.expire_all()
        product = db_session.scalar(select(Product).where(Product.remote_id == seed_remote["product_a"]))
        assert product.price == 5.0
        assert product.synced is True

    def test_pull_skips_document_with_unknown_parent(self, sync_service, remote_db, seed_remote):
        remote_db["products"].insert_one({"name": "Orphan", "price": 1.0, "stock": 1, "branch": ObjectId()})

        report = sync_service.sync_down()

        assert report.skipped == 1
        assert report.pulled == 6


class TestTriggerSync:
    def test_full_run_then_noop(self, sync_service, db_session, seed_branch, seed_products):
        first = sync_service.trigger_sync()
        second = sync_service.trigger_sync()

        assert first.status == SyncRunStatus.SUCCESS
        assert first.pushed == 3
        assert first.pulled == 0
        assert second.pushed == 0
        assert second.pulled == 0
        assert second.unchanged == 3

        db_session.expire_all()
        assert db_session.scalar(select(func.count()).select_from(SyncLog)) == 2

    def test_offline_is_skipped(self, session_factory, remote, offline_monitor, db_session, seed_branch):
        service = SyncService(session_factory, remote, offline_monitor)

        report = service.trigger_sync()

        assert report.status == SyncRunStatus.SKIPPED
        assert report.reason == "remote store offline"
        assert remote.database["branches"].count_documents({}) == 0
        assert db_session.scalar(select(func.count()).select_from(SyncLog)) == 0

    def test_without_remote_is_skipped(self, session_factory, online_monitor):
        report = SyncService(session_factory, None, online_monitor).trigger_sync()
        assert report.status == SyncRunStatus.SKIPPED
        assert report.reason == "remote store not configured"

    def test_concurrent_run_is_skipped(self, sync_service, seed_branch):
        sync_service._lock.acquire()
        try:
            assert sync_service.running is True
            report = sync_service.trigger_sync()
        finally:
            sync_service._lock.release()

        assert report.status == SyncRunStatus.SKIPPED
        assert report.reason == "sync already in progress"
        assert report.pushed == 0

    def test_status_reports_pending_and_last_run(self, sync_service, seed_branch, seed_products):
        before = sync_service.status()
        assert before["online"] is True
        assert before["pending"] == {"branches": 1, "products": 2}
        assert before["pending_total"] == 3
        assert before["last_sync"] is None

        sync_service.trigger_sync()
        after = sync_service.status()

        assert after["pending_total"] == 0
        assert after["last_sync"]["status"] == "success"
        assert after["last_sync"]["pushed"] == 3

    def test_report_serializes(self, sync_service, seed_branch):
        data = sync_service.trigger_sync().to_dict()
        assert data["status"] == "success"
        assert isinstance(data["started_at"], str)


class TestSyncScheduler:
    @pytest.mark.asyncio
    async def test_run_once_executes_sync(self, sync_service, seed_branch):
        scheduler = SyncScheduler(sync_service, interval_seconds=60)

        report = await scheduler.run_once()

        assert report.pushed == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, sync_service):
        scheduler = SyncScheduler(sync_service, interval_seconds=60)

        await scheduler.start()
        assert scheduler.running is True
        await scheduler.stop()

        assert scheduler.running is False


def test_queue_entries_completed_after_push(sync_service, db_session, seed_branch, session_factory):
    LocalStore(session_factory).create("products", {"name": "Queued", "price": 2.0, "branch": local_marker(seed_branch.id)})

    sync_service.sync_up()

    db_session.expire_all()
    entries = db_session.scalars(select(SyncOutboxEntry).where(SyncOutboxEntry.entity == "products")).all()
    assert len(entries) == 1
    assert entries[0].status == SyncEntryStatus.DONE
