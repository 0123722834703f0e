import logging

from constants import (
    DEFAULT_CURRENCY,
    PROPERTIES_TABLE,
    TRANSACTION_CATEGORIES,
    TRANSACTION_TYPES,
    TRANSACTIONS_TABLE,
)
from logic.financial_logic import summarize_transactions
from logic.form_validation import (
    ensure_valid,
    max_length,
    min_value,
    numeric,
    one_of,
    required,
    valid_date,
)
from services.db_service import BackendClient, BackendError
from services.lease_service import get_current_lease_by_property, get_tenant_for_lease
from services.receipt_service import generate_receipt_pdf
from services.storage_service import StorageError, property_folder, upload_to_storage

log = logging.getLogger(__name__)

TRANSACTION_FIELDS = (
    'lease_id', 'transaction_date', 'amount', 'currency', 'transaction_type', 'category',
    'description', 'notes',
)

TRANSACTION_FORM_RULES = {
    'amount': [required("Amount is required"), numeric(), min_value(0, "Amount cannot be negative")],
    'transaction_date': [required("Date is required"), valid_date()],
    'transaction_type': [required("Transaction type is required"), one_of(TRANSACTION_TYPES)],
    'category': [required("Category is required"), one_of(TRANSACTION_CATEGORIES)],
    'description': [max_length(500)],
}


def _clean(data: dict) -> dict:
    row = {k: data[k] for k in TRANSACTION_FIELDS if k in data}
    if 'amount' in row:
        row['amount'] = float(row['amount'])
    return row


def get_transactions(client: BackendClient, property_id: str, transaction_type: str = None) -> list:
    """A property's transactions, newest first, optionally only income or only expenses."""
    filters = [('property_id', 'eq', property_id)]
    if transaction_type:
        filters.append(('transaction_type', 'eq', transaction_type))
    return client.select(TRANSACTIONS_TABLE, filters, order_by='transaction_date', descending=True).unwrap() or []


def get_transaction(client: BackendClient, transaction_id: str) -> dict | None:
    return client.select_one(TRANSACTIONS_TABLE, transaction_id).unwrap()


def create_transaction(client: BackendClient, property_id: str, data: dict) -> dict:
    ensure_valid(data, TRANSACTION_FORM_RULES)
    row = _clean(data)
    row['property_id'] = property_id
    row.setdefault('currency', DEFAULT_CURRENCY)
    created = client.insert(TRANSACTIONS_TABLE, row).unwrap()
    log.info(f"Recorded {row['transaction_type']} of {row['amount']} on property {property_id}.")
    return created


def update_transaction(client: BackendClient, transaction: dict, updates: dict) -> dict:
    ensure_valid({**transaction, **updates}, TRANSACTION_FORM_RULES)
    return client.update(TRANSACTIONS_TABLE, transaction['id'], _clean(updates)).unwrap()


def delete_transaction(client: BackendClient, transaction_id: str) -> None:
    client.delete(TRANSACTIONS_TABLE, transaction_id).unwrap()


def get_financial_summary(client: BackendClient, property_id: str) -> dict:
    return summarize_transactions(get_transactions(client, property_id))


def create_receipt(client: BackendClient, user_id: str, transaction: dict) -> str:
    """
    Renders a PDF receipt for the transaction, stores it next to the property's documents
    and links it through `receipt_url`. Returns the storage path.
    """
    property_row = client.select_one(PROPERTIES_TABLE, transaction['property_id']).unwrap()
    if property_row is None:
        raise BackendError(f"Property {transaction['property_id']} not found", PROPERTIES_TABLE)

    tenant = None
    if transaction.get('transaction_type') == 'income':
        tenant = get_tenant_for_lease(client, get_current_lease_by_property(client, property_row['id']))

    pdf_bytes = generate_receipt_pdf(transaction, property_row, tenant)
    path = f"{property_folder(user_id, property_row['id'])}/receipts/{transaction['id']}.pdf"
    if not upload_to_storage(pdf_bytes, path):
        raise StorageError(f"Failed to store receipt for transaction {transaction['id']}")

    client.update(TRANSACTIONS_TABLE, transaction['id'], {'receipt_url': path}).unwrap()
    log.info(f"Stored receipt for transaction {transaction['id']} at {path}.")
    return path
