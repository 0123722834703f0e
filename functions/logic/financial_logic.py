from collections import defaultdict
import logging

from constants import DEFAULT_CURRENCY

log = logging.getLogger(__name__)


def _amount(transaction: dict) -> float:
    try:
        return float(transaction.get('amount') or 0)
    except (TypeError, ValueError):
        log.warning(f"Transaction {transaction.get('id')} has a non-numeric amount; counting it as 0.")
        return 0.0


def summarize_transactions(transactions: list) -> dict:
    """
    Totals income and expenses for a list of transactions.
    Amounts are assumed to share one currency; the first transaction's currency is reported.
    """
    income_by_category = defaultdict(float)
    expenses_by_category = defaultdict(float)
    for t in transactions:
        category = t.get('category') or 'other'
        if t.get('transaction_type') == 'income':
            income_by_category[category] += _amount(t)
        elif t.get('transaction_type') == 'expense':
            expenses_by_category[category] += _amount(t)

    total_income = sum(income_by_category.values())
    total_expenses = sum(expenses_by_category.values())
    return {
        'total_income': total_income,
        'total_expenses': total_expenses,
        'cash_flow': total_income - total_expenses,
        'income_by_category': dict(income_by_category),
        'expenses_by_category': dict(expenses_by_category),
        'transaction_count': len(transactions),
        'currency': (transactions[0].get('currency') if transactions else None) or DEFAULT_CURRENCY,
    }
