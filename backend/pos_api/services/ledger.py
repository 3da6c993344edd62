"""
Customer ledger and branch finance records.

Ledger lines are append-only. Each line stores the customer's running
balance after it: a debit subtracts the amount, a credit adds it. The
customer row keeps the current balance and the lifetime debit and credit
totals in step with the ledger.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from pos_shared.config.constants import Events, FinanceType, LedgerTransactionType
from pos_shared.config.logging import get_logger
from pos_shared.infrastructure.db import get_db_context
from pos_shared.utils.exceptions import NotFoundError
from pos_shared.utils.schemas import ExpenseInput, FinanceEntryInput, LedgerEntryInput, parse_payload

from pos_api.models import Customer, CustomerLedgerEntry, Expense, FinanceEntry, User
from pos_api.stores.local import LocalRefs, row_document
from pos_api.stores.mapping import CUSTOMER_LEDGER

from .base_service import BranchScopedService
from .orders.totals import money, to_decimal

logger = get_logger(__name__)


class LedgerService(BranchScopedService):
    def add_entry(self, branch_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Append a debit or credit line to a customer's ledger.

        Payload keys: ``customer``, ``transactionType`` (debit|credit),
        ``amount`` (> 0), optional ``description`` and ``date``.
        """
        data = parse_payload(LedgerEntryInput, payload)
        with self.transaction(branch_id, "add_ledger_entry") as scope:
            customer = scope.get(Customer, "customers", "Customer", data.customer)
            amount = money(data.amount)
            balance = to_decimal(customer.current_balance)
            if data.transaction_type == LedgerTransactionType.DEBIT:
                balance -= amount
                customer.total_debit = float(money(to_decimal(customer.total_debit) + amount))
            else:
                balance += amount
                customer.total_credit = float(money(to_decimal(customer.total_credit) + amount))
            customer.current_balance = float(money(balance))

            entry = CustomerLedgerEntry(
                branch_id=scope.branch.id,
                customer_id=customer.id,
                transaction_type=data.transaction_type,
                amount=float(amount),
                balance=customer.current_balance,
                description=data.description,
                entry_date=data.date or self._clock(),
                synced=False,
            )
            scope.db.add(entry)
            scope.touch("customer_ledger", entry)
            scope.touch("customers", customer)
            document = scope.document("customer_ledger", entry)
            scope.emit(Events.LEDGER_ENTRY_CREATED, "ledger_entry", document)

        logger.info(
            "Ledger entry added",
            customer=data.customer,
            transaction_type=data.transaction_type,
            amount=float(amount),
            balance=document["balance"],
        )
        return document

    def entries(self, customer_id: str) -> list[dict[str, Any]]:
        """Ledger lines of a customer, oldest first."""
        with get_db_context(self._session_factory) as db:
            customer = self._customer(db, customer_id)
            rows = db.scalars(
                select(CustomerLedgerEntry)
                .where(CustomerLedgerEntry.customer_id == customer.id)
                .order_by(CustomerLedgerEntry.entry_date, CustomerLedgerEntry.id)
            )
            return [row_document(db, CUSTOMER_LEDGER, row) for row in rows]

    def balance(self, customer_id: str) -> dict[str, float]:
        with get_db_context(self._session_factory) as db:
            customer = self._customer(db, customer_id)
            return {
                "currentBalance": customer.current_balance,
                "totalDebit": customer.total_debit,
                "totalCredit": customer.total_credit,
            }

    @staticmethod
    def _customer(db, customer_id: str) -> Customer:
        local_id = LocalRefs(db).to_local("customers", str(customer_id))
        customer = db.get(Customer, local_id) if local_id is not None else None
        if customer is None:
            raise NotFoundError("Customer", customer_id)
        return customer


class FinanceService(BranchScopedService):
    def record(self, branch_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Record an income or expense movement of the branch."""
        data = parse_payload(FinanceEntryInput, payload)
        with self.transaction(branch_id, "record_finance_entry") as scope:
            entry = FinanceEntry(
                branch_id=scope.branch.id,
                entry_type=data.type,
                category=data.category,
                amount=float(money(data.amount)),
                description=data.description,
                reference=data.reference,
                entry_date=data.date or self._clock(),
                synced=False,
            )
            scope.db.add(entry)
            scope.touch("finance", entry)
            document = scope.document("finance", entry)
            scope.emit(Events.FINANCE_ENTRY_CREATED, "finance_entry", document)
        return document

    def record_expense(self, branch_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Record an operating expense. A matching finance entry of type
        ``expense`` is written with it so branch totals stay complete.
        """
        data = parse_payload(ExpenseInput, payload)
        with self.transaction(branch_id, "record_expense") as scope:
            created_by = scope.get(User, "users", "User", data.created_by).id if data.created_by else None
            when = data.date or self._clock()
            amount = float(money(data.amount))
            expense = Expense(
                branch_id=scope.branch.id,
                category=data.category,
                amount=amount,
                description=data.description,
                payment_method=data.payment_method,
                expense_date=when,
                created_by_id=created_by,
                synced=False,
            )
            scope.db.add(expense)
            scope.touch("expenses", expense)
            document = scope.document("expenses", expense)

            entry = FinanceEntry(
                branch_id=scope.branch.id,
                entry_type=FinanceType.EXPENSE,
                category=data.category,
                amount=amount,
                description=data.description,
                reference=document["_id"],
                entry_date=when,
                synced=False,
            )
            scope.db.add(entry)
            scope.touch("finance", entry)
            scope.emit(Events.FINANCE_ENTRY_CREATED, "finance_entry", scope.document("finance", entry))

        logger.info("Expense recorded", category=data.category, amount=amount)
        return document

    def totals(self, branch_id: str) -> dict[str, float]:
        """Income, expense and net of all finance entries of a branch."""
        with get_db_context(self._session_factory) as db:
            branch_key = LocalRefs(db).to_local("branches", str(branch_id))
            if branch_key is None:
                raise NotFoundError("Branch", branch_id)
            rows = db.execute(
                select(FinanceEntry.entry_type, FinanceEntry.amount).where(FinanceEntry.branch_id == branch_key)
            )
            income = expense = to_decimal(0)
            for entry_type, amount in rows:
                if entry_type == FinanceType.INCOME:
                    income += to_decimal(amount)
                else:
                    expense += to_decimal(amount)
            return {
                "income": float(money(income)),
                "expense": float(money(expense)),
                "net": float(money(income - expense)),
            }
