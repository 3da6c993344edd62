"""
Tests for the customer ledger and branch finance records.
"""

import pytest
from sqlalchemy import select

from pos_shared.utils.exceptions import NotFoundError, ValidationError
from pos_api.models import Branch, Customer, Expense, FinanceEntry, OutboxEvent, SyncOutboxEntry
from pos_api.stores.mapping import local_marker


@pytest.fixture
def branch_id(seed_branch):
    return local_marker(seed_branch.id)


@pytest.fixture
def customer_id(seed_customer):
    return local_marker(seed_customer.id)


class TestLedgerService:
    def test_credit_then_debit_keeps_running_balance(self, ledger_service, branch_id, customer_id, db_session, now):
        credit = ledger_service.add_entry(
            branch_id, {"customer": customer_id, "transactionType": "credit", "amount": 100, "description": "Deposit"}
        )
        debit = ledger_service.add_entry(
            branch_id, {"customer": customer_id, "transactionType": "debit", "amount": 30.5}
        )

        assert credit["balance"] == 100.0
        assert credit["date"] == now
        assert debit["balance"] == 69.5
        assert debit["customer"] == customer_id

        db_session.expire_all()
        customer = db_session.get(Customer, int(customer_id.removeprefix("local-")))
        assert customer.current_balance == 69.5
        assert customer.total_credit == 100.0
        assert customer.total_debit == 30.5
        assert customer.synced is False

    def test_entries_queue_and_emit(self, ledger_service, branch_id, customer_id, db_session):
        ledger_service.add_entry(branch_id, {"customer": customer_id, "transactionType": "credit", "amount": 10})

        events = db_session.scalars(select(OutboxEvent)).all()
        assert [event.event_type for event in events] == ["ledger-entry-created"]
        assert events[0].branch == "MAIN"
        queued = {entry.entity for entry in db_session.scalars(select(SyncOutboxEntry))}
        assert queued == {"customer_ledger", "customers"}

    def test_debit_can_go_negative(self, ledger_service, branch_id, customer_id):
        entry = ledger_service.add_entry(branch_id, {"customer": customer_id, "transactionType": "debit", "amount": 12})
        assert entry["balance"] == -12.0

    def test_entries_oldest_first(self, ledger_service, branch_id, customer_id):
        ledger_service.add_entry(
            branch_id,
            {"customer": customer_id, "transactionType": "credit", "amount": 5, "date": "2024-01-03T10:00:00Z"},
        )
        ledger_service.add_entry(
            branch_id,
            {"customer": customer_id, "transactionType": "credit", "amount": 7, "date": "2024-01-01T10:00:00Z"},
        )

        amounts = [entry["amount"] for entry in ledger_service.entries(customer_id)]

        assert amounts == [7.0, 5.0]

    def test_balance(self, ledger_service, branch_id, customer_id):
        ledger_service.add_entry(branch_id, {"customer": customer_id, "transactionType": "credit", "amount": 40})
        ledger_service.add_entry(branch_id, {"customer": customer_id, "transactionType": "debit", "amount": 15})

        assert ledger_service.balance(customer_id) == {
            "currentBalance": 25.0,
            "totalDebit": 15.0,
            "totalCredit": 40.0,
        }

    @pytest.mark.parametrize(
        "payload, message",
        [
            ({"transactionType": "credit", "amount": 0}, "amount"),
            ({"transactionType": "refund", "amount": 5}, "transactionType"),
            ({"amount": 5}, "transactionType"),
        ],
    )
    def test_invalid_entries_rejected(self, ledger_service, branch_id, customer_id, payload, message):
        with pytest.raises(ValidationError, match=message):
            ledger_service.add_entry(branch_id, {"customer": customer_id, **payload})

    def test_unknown_customer(self, ledger_service, branch_id):
        with pytest.raises(NotFoundError, match="Customer"):
            ledger_service.add_entry(branch_id, {"customer": "local-404", "transactionType": "credit", "amount": 1})
        with pytest.raises(NotFoundError):
            ledger_service.entries("local-404")

    def test_customer_of_another_branch(self, ledger_service, customer_id, db_session):
        other = Branch(name="North", code="NORTH", settings={})
        db_session.add(other)
        db_session.commit()

        with pytest.raises(NotFoundError):
            ledger_service.add_entry(
                local_marker(other.id), {"customer": customer_id, "transactionType": "credit", "amount": 1}
            )
        assert ledger_service.balance(customer_id)["currentBalance"] == 0.0


class TestFinanceService:
    def test_record_income(self, finance_service, branch_id, db_session):
        entry = finance_service.record(
            branch_id, {"type": "income", "amount": 120.456, "category": "sales", "reference": "Z-report"}
        )

        assert entry["type"] == "income"
        assert entry["amount"] == 120.46
        assert entry["branch"] == branch_id
        events = db_session.scalars(select(OutboxEvent)).all()
        assert [event.event_type for event in events] == ["finance-entry-created"]

    def test_expense_writes_finance_entry(self, finance_service, branch_id, seed_cashier, db_session):
        expense = finance_service.record_expense(
            branch_id,
            {
                "category": "supplies",
                "amount": 30,
                "paymentMethod": "cash",
                "createdBy": local_marker(seed_cashier.id),
            },
        )

        assert expense["createdBy"] == local_marker(seed_cashier.id)
        assert db_session.get(Expense, int(expense["_id"].removeprefix("local-"))).amount == 30.0
        finance = db_session.scalars(select(FinanceEntry)).all()
        assert len(finance) == 1
        assert finance[0].entry_type == "expense"
        assert finance[0].reference == expense["_id"]

    def test_totals(self, finance_service, branch_id):
        finance_service.record(branch_id, {"type": "income", "amount": 100})
        finance_service.record(branch_id, {"type": "income", "amount": 50})
        finance_service.record_expense(branch_id, {"category": "rent", "amount": 80})

        assert finance_service.totals(branch_id) == {"income": 150.0, "expense": 80.0, "net": 70.0}

    def test_totals_of_unknown_branch(self, finance_service):
        with pytest.raises(NotFoundError):
            finance_service.totals("local-404")

    def test_invalid_type_rejected(self, finance_service, branch_id):
        with pytest.raises(ValidationError, match="type"):
            finance_service.record(branch_id, {"type": "transfer", "amount": 10})
