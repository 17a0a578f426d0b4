"""In-memory ledger.

Stands in for the application's persisted ledger. Writes are append-only;
every source (manual entry, merged documents) appends to the same list.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable

from app.schemas.finance import BasicInsight, LedgerSummary, Transaction, TransactionCreate

logger = logging.getLogger(__name__)

SAVINGS_RATE_TARGET = 20.0
HIGH_DAILY_SPENDING = 50.0


class Ledger:
    def __init__(self, transactions: Iterable[Transaction] = ()) -> None:
        self._transactions: list[Transaction] = list(transactions)

    def __len__(self) -> int:
        return len(self._transactions)

    def append(self, transactions: Iterable[Transaction]) -> list[Transaction]:
        added = list(transactions)
        self._transactions.extend(added)
        logger.info("Ledger +%d transaction(s), size=%d", len(added), len(self._transactions))
        return added

    def add(self, payload: TransactionCreate) -> Transaction:
        """Manual entry: assigns a fresh id."""
        transaction = Transaction(**payload.model_dump())
        self.append([transaction])
        return transaction

    def snapshot(self) -> list[Transaction]:
        return list(self._transactions)

    def recent(self, n: int) -> list[Transaction]:
        if n <= 0:
            return []
        return self._transactions[-n:]


def summarize(transactions: Iterable[Transaction]) -> LedgerSummary:
    items = list(transactions)
    total_income = sum(t.amount for t in items if t.type == "income")
    expenses = [t for t in items if t.type == "expense"]
    total_expenses = sum(t.amount for t in expenses)

    category_totals: dict[str, float] = defaultdict(float)
    daily: dict[str, float] = defaultdict(float)
    for t in expenses:
        category_totals[t.category] += t.amount
        daily[t.date.isoformat()] += t.amount

    average_daily = total_expenses / len(daily) if daily else 0.0
    return LedgerSummary(
        total_income=round(total_income, 2),
        total_expenses=round(total_expenses, 2),
        net_income=round(total_income - total_expenses, 2),
        category_totals={k: round(v, 2) for k, v in category_totals.items()},
        average_daily_spending=round(average_daily, 2),
        transaction_count=len(items),
    )


def basic_insights(summary: LedgerSummary) -> list[BasicInsight]:
    """Rule-based observations that need no AI call."""
    insights: list[BasicInsight] = []

    if summary.category_totals:
        category, amount = max(summary.category_totals.items(), key=lambda kv: kv[1])
        insights.append(
            BasicInsight(
                kind="warning",
                title="Top Spending Category",
                message=f"{category} accounts for ${amount:.2f} of your expenses",
                action="Consider setting a budget limit for this category",
            )
        )

    if summary.total_income > 0:
        savings_rate = summary.net_income / summary.total_income * 100
        if savings_rate < SAVINGS_RATE_TARGET:
            insights.append(
                BasicInsight(
                    kind="tip",
                    title="Improve Your Savings Rate",
                    message=f"You're saving {savings_rate:.1f}% of your income",
                    action="Try to save at least 20% for a healthy financial future",
                )
            )

    if summary.average_daily_spending > HIGH_DAILY_SPENDING:
        insights.append(
            BasicInsight(
                kind="alert",
                title="High Daily Spending",
                message=f"Your average daily spending is ${summary.average_daily_spending:.2f}",
                action="Consider tracking smaller purchases to reduce daily expenses",
            )
        )

    return insights
