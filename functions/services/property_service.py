import logging

from constants import (
    ADDRESSES_TABLE,
    DEFAULT_CURRENCY,
    DOCUMENTS_TABLE,
    LEASES_TABLE,
    MAINTENANCE_TASKS_TABLE,
    PROPERTIES_TABLE,
    PROPERTY_TYPES,
    TRANSACTIONS_TABLE,
)
from logic.form_validation import (
    ensure_valid,
    max_length,
    max_value,
    min_value,
    numeric,
    one_of,
    required,
    zip_code,
)
from services.db_service import BackendClient

log = logging.getLogger(__name__)

PROPERTY_FIELDS = (
    'title', 'description', 'property_type', 'property_status', 'bedrooms', 'bathrooms', 'size',
    'unit_system', 'parking_spaces', 'year_built', 'currency', 'purchase_price', 'notes',
)
ADDRESS_FIELDS = (
    'street', 'street_number', 'apartment_number', 'city', 'state', 'zip_code', 'country',
    'latitude', 'longitude',
)

PROPERTY_FORM_RULES = {
    'title': [required("Property title is required"), max_length(120)],
    'property_type': [required("Property type is required"), one_of(PROPERTY_TYPES)],
    'property_status': [one_of(('maintenance', 'listed'))],
    'bedrooms': [numeric(), min_value(0)],
    'bathrooms': [numeric(), min_value(0)],
    'size': [numeric(), min_value(0)],
    'parking_spaces': [numeric(), min_value(0)],
    'year_built': [numeric(), min_value(1800), max_value(2100)],
    'purchase_price': [numeric(), min_value(0, "Purchase price cannot be negative")],
}

ADDRESS_FORM_RULES = {
    'street': [required("Street is required")],
    'city': [required("City is required")],
    'zip_code': [zip_code()],
}


def _pick(data: dict, fields: tuple) -> dict:
    return {k: data[k] for k in fields if k in data}


def get_properties_by_user(client: BackendClient, user_id: str) -> list:
    """Properties owned by the user, newest first."""
    return client.select(
        PROPERTIES_TABLE, [('user_id', 'eq', user_id)], order_by='created_at', descending=True,
    ).unwrap() or []


def get_property(client: BackendClient, user_id: str, property_id: str) -> dict | None:
    """
    Gets a property owned by `user_id`.
    Returns None when the property does not exist or belongs to someone else.
    """
    row = client.select_one(PROPERTIES_TABLE, property_id).unwrap()
    if row is None:
        return None
    if row.get('user_id') != user_id:
        log.warning(f"User {user_id} requested property {property_id} owned by another user.")
        return None
    return row


def get_address(client: BackendClient, address_id: str) -> dict | None:
    if not address_id:
        return None
    return client.select_one(ADDRESSES_TABLE, address_id).unwrap()


def get_address_for_property(client: BackendClient, property_id: str) -> dict | None:
    row = client.select_one(PROPERTIES_TABLE, property_id).unwrap()
    if row is None:
        return None
    return get_address(client, row.get('address_id'))


def upsert_address(client: BackendClient, property_row: dict, address: dict) -> dict:
    """Creates the property's address or updates the one it already links to."""
    ensure_valid(address, ADDRESS_FORM_RULES)
    fields = _pick(address, ADDRESS_FIELDS)
    if property_row.get('address_id'):
        return client.update(ADDRESSES_TABLE, property_row['address_id'], fields).unwrap()
    created = client.insert(ADDRESSES_TABLE, fields).unwrap()
    client.update(PROPERTIES_TABLE, property_row['id'], {'address_id': created['id']}).unwrap()
    property_row['address_id'] = created['id']
    return created


def create_property(client: BackendClient, user_id: str, data: dict, address: dict = None) -> dict:
    ensure_valid(data, PROPERTY_FORM_RULES)
    if address:
        ensure_valid(address, ADDRESS_FORM_RULES)

    row = _pick(data, PROPERTY_FIELDS)
    row['user_id'] = user_id
    row.setdefault('currency', DEFAULT_CURRENCY)
    created = client.insert(PROPERTIES_TABLE, row).unwrap()
    if address:
        upsert_address(client, created, address)
    log.info(f"User {user_id} created property {created['id']}.")
    return created


def update_property(client: BackendClient, property_row: dict, updates: dict, address: dict = None) -> dict:
    ensure_valid({**property_row, **updates}, PROPERTY_FORM_RULES)
    fields = _pick(updates, PROPERTY_FIELDS)
    updated = client.update(PROPERTIES_TABLE, property_row['id'], fields).unwrap() if fields else dict(property_row)
    if address:
        upsert_address(client, updated, address)
    return updated


def delete_property(client: BackendClient, property_row: dict, delete_files=None) -> None:
    """
    Deletes a property together with its address, leases, transactions, tasks and documents.
    `delete_files(property_row)` is called first to remove the property's stored objects.
    """
    property_id = property_row['id']
    if delete_files is not None:
        delete_files(property_row)
    for table in (DOCUMENTS_TABLE, TRANSACTIONS_TABLE, MAINTENANCE_TASKS_TABLE, LEASES_TABLE):
        removed = client.delete_where(table, [('property_id', 'eq', property_id)]).unwrap()
        log.info(f"Removed {removed} {table} rows of property {property_id}.")
    if property_row.get('address_id'):
        client.delete(ADDRESSES_TABLE, property_row['address_id']).unwrap()
    client.delete(PROPERTIES_TABLE, property_id).unwrap()
    log.info(f"Deleted property {property_id}.")
