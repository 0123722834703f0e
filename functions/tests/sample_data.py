"""Rows and an in-memory BackendClient shared by the tests."""
import copy
import itertools

from services.db_service import BackendError, QueryResult, _matches, _sort_rows

USER = {'uid': 'user-1', 'email': 'landlord@example.com', 'current_level': 'aal1',
        'next_level': 'aal1', 'requires_mfa': False}

ADDRESS = {
    'id': 'addr-1',
    'street': 'Main St',
    'street_number': '12',
    'apartment_number': '4',
    'city': 'Springfield',
    'state': 'IL',
    'zip_code': '62701',
    'country': 'US',
}

PROPERTY = {
    'id': 'prop-1',
    'user_id': 'user-1',
    'title': 'Maple Court',
    'property_type': 'apartment',
    'bedrooms': 2,
    'bathrooms': 1,
    'size': 850,
    'unit_system': 'imperial',
    'currency': 'USD',
    'address_id': 'addr-1',
    'created_at': '2024-01-10T09:00:00',
}

SECOND_PROPERTY = {
    'id': 'prop-2',
    'user_id': 'user-1',
    'title': 'Oak House',
    'property_type': 'house',
    'bedrooms': 4,
    'bathrooms': 2,
    'currency': 'EUR',
    'created_at': '2024-02-01T09:00:00',
}

ACTIVE_LEASE = {
    'id': 'lease-1',
    'property_id': 'prop-1',
    'tenant_first_name': 'Jane',
    'tenant_last_name': 'Doe',
    'tenant_email': 'jane@example.com',
    'tenant_phone': '555-123-4567',
    'rent_amount': 1200.0,
    'currency': 'USD',
    'lease_start': '2024-01-01',
    'lease_end': '2024-06-30',
    'payment_frequency': 'monthly',
    'payment_due_day': 1,
    'security_deposit': 1200.0,
    'is_lease_active': True,
}

PAST_LEASE = {
    'id': 'lease-0',
    'property_id': 'prop-1',
    'tenant_first_name': 'John',
    'tenant_last_name': 'Smith',
    'rent_amount': 1100.0,
    'currency': 'USD',
    'lease_start': '2023-01-01',
    'lease_end': '2023-12-31',
    'payment_frequency': 'monthly',
    'is_lease_active': False,
}

TRANSACTIONS = [
    {'id': 'tx-1', 'property_id': 'prop-1', 'transaction_date': '2024-02-01', 'amount': 1200.0,
     'currency': 'USD', 'transaction_type': 'income', 'category': 'rent'},
    {'id': 'tx-2', 'property_id': 'prop-1', 'transaction_date': '2024-02-10', 'amount': 150.0,
     'currency': 'USD', 'transaction_type': 'expense', 'category': 'maintenance'},
    {'id': 'tx-3', 'property_id': 'prop-1', 'transaction_date': '2024-03-01', 'amount': 1200.0,
     'currency': 'USD', 'transaction_type': 'income', 'category': 'rent'},
]

TASK = {
    'id': 'task-1',
    'property_id': 'prop-1',
    'title': 'Fix the sink',
    'task_status': 'open',
    'priority': 'high',
    'due_date': '2024-03-01',
    'created_at': '2024-02-20T10:00:00',
}


def lease_form(**overrides) -> dict:
    form = {
        'rent_amount': '1500',
        'currency': 'USD',
        'lease_start': '2024-07-01',
        'lease_end': '2024-12-31',
        'payment_frequency': 'monthly',
        'payment_due_day': 5,
        'security_deposit': '1500',
        'first_name': ' Alice ',
        'last_name': 'Walker',
        'email': 'alice@example.com',
        'phone': '555-987-6543',
    }
    form.update(overrides)
    return form


class InMemoryClient:
    """Same interface as BackendClient, backed by dicts. `fail_on` maps a table to an error message."""

    def __init__(self, tables: dict = None):
        self.tables = {name: {row['id']: copy.deepcopy(row) for row in rows}
                       for name, rows in (tables or {}).items()}
        self.fail_on = {}
        self.calls = []
        self._ids = itertools.count(1)

    def _failure(self, table):
        if table in self.fail_on:
            return QueryResult(None, BackendError(self.fail_on[table], table))
        return None

    def select(self, table, filters=None, order_by=None, descending=False, limit=None):
        self.calls.append(('select', table))
        failure = self._failure(table)
        if failure:
            return failure
        rows = [copy.deepcopy(r) for r in self.tables.get(table, {}).values() if _matches(r, filters or [])]
        if order_by:
            rows = _sort_rows(rows, order_by, descending)
        return QueryResult(rows[:limit] if limit is not None else rows, None)

    def select_one(self, table, row_id):
        self.calls.append(('select_one', table))
        failure = self._failure(table)
        if failure:
            return failure
        row = self.tables.get(table, {}).get(row_id)
        return QueryResult(copy.deepcopy(row) if row else None, None)

    def insert(self, table, row, row_id=None):
        self.calls.append(('insert', table))
        failure = self._failure(table)
        if failure:
            return failure
        stored = {k: v for k, v in row.items() if v is not None}
        stored['id'] = row_id or f"{table}-{next(self._ids)}"
        self.tables.setdefault(table, {})[stored['id']] = stored
        return QueryResult(copy.deepcopy(stored), None)

    def update(self, table, row_id, fields):
        self.calls.append(('update', table))
        failure = self._failure(table)
        if failure:
            return failure
        if row_id not in self.tables.get(table, {}):
            return QueryResult(None, BackendError(f"{table}/{row_id} not found", table))
        self.tables[table][row_id].update(fields)
        return QueryResult(copy.deepcopy(self.tables[table][row_id]), None)

    def delete(self, table, row_id):
        self.calls.append(('delete', table))
        failure = self._failure(table)
        if failure:
            return failure
        self.tables.get(table, {}).pop(row_id, None)
        return QueryResult(True, None)

    def delete_where(self, table, filters):
        result = self.select(table, filters)
        if result.error:
            return result
        for row in result.data:
            self.delete(table, row['id'])
        return QueryResult(len(result.data), None)


def sample_client() -> InMemoryClient:
    return InMemoryClient({
        'properties': [PROPERTY, SECOND_PROPERTY],
        'addresses': [ADDRESS],
        'leases': [ACTIVE_LEASE, PAST_LEASE],
        'transactions': TRANSACTIONS,
        'maintenance_tasks': [TASK],
        'documents': [],
        'tenants': [],
        'users': [],
        'todo_list': [],
    })
