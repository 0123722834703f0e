import logging
from datetime import date

from constants import LEASES_TABLE, TENANTS_TABLE
from logic.form_validation import FormValidationError, email, ensure_valid, phone, required
from logic.lease_logic import (
    build_lease_payload,
    check_lease_overlap,
    is_lease_currently_active,
    other_leases_for,
    split_leases,
    tenant_from_lease,
    validate_lease_form,
)
from services.db_service import BackendClient

log = logging.getLogger(__name__)

TENANT_FIELDS = ('first_name', 'last_name', 'email', 'phone', 'notes')

TENANT_FORM_RULES = {
    'first_name': [required("First name is required")],
    'last_name': [required("Last name is required")],
    'email': [email()],
    'phone': [phone()],
}


class LeaseOverlapError(Exception):
    """Raised when a submitted lease overlaps another lease of the same property."""


def get_leases_by_property(client: BackendClient, property_id: str) -> list:
    return client.select(
        LEASES_TABLE, [('property_id', 'eq', property_id)], order_by='lease_start', descending=True,
    ).unwrap() or []


def get_current_lease_by_property(client: BackendClient, property_id: str, today: date = None) -> dict | None:
    current, _ = split_leases(get_leases_by_property(client, property_id), today)
    return current


def get_past_leases_by_property(client: BackendClient, property_id: str, today: date = None) -> list:
    """Every lease of the property other than the current one, newest first."""
    _, others = split_leases(get_leases_by_property(client, property_id), today)
    return others


def save_lease(client: BackendClient, property_id: str, form: dict, lease_id: str = None,
               today: date = None) -> dict:
    """
    Creates a lease, or updates `lease_id`, after validating the form and checking that
    it doesn't overlap any other lease of the property.
    """
    is_valid, errors = validate_lease_form(form)
    if not is_valid:
        raise FormValidationError(errors)

    current, others = split_leases(get_leases_by_property(client, property_id), today)
    overlap = check_lease_overlap(form, other_leases_for(current, others, lease_id))
    if overlap:
        log.info(f"Rejected lease for property {property_id}: {overlap}")
        raise LeaseOverlapError(overlap)

    payload = build_lease_payload(form, today)
    if form.get('tenant_id'):
        payload['tenant_id'] = form['tenant_id']

    if lease_id:
        saved = client.update(LEASES_TABLE, lease_id, payload).unwrap()
        log.info(f"Updated lease {lease_id} on property {property_id}.")
    else:
        payload['property_id'] = property_id
        saved = client.insert(LEASES_TABLE, payload).unwrap()
        log.info(f"Added lease {saved['id']} to property {property_id}.")
    return saved


def get_lease(client: BackendClient, lease_id: str) -> dict | None:
    return client.select_one(LEASES_TABLE, lease_id).unwrap()


def delete_lease(client: BackendClient, lease_id: str) -> None:
    client.delete(LEASES_TABLE, lease_id).unwrap()


def refresh_lease_statuses(client: BackendClient, property_id: str, today: date = None) -> int:
    """
    Recomputes `is_lease_active` from each lease's date range.
    Returns the number of leases whose flag changed.
    """
    changed = 0
    for lease in get_leases_by_property(client, property_id):
        active = is_lease_currently_active(lease.get('lease_start'), lease.get('lease_end'), today)
        if bool(lease.get('is_lease_active')) != active:
            client.update(LEASES_TABLE, lease['id'], {'is_lease_active': active}).unwrap()
            changed += 1
    if changed:
        log.info(f"Refreshed {changed} lease statuses on property {property_id}.")
    return changed


def get_tenant(client: BackendClient, tenant_id: str) -> dict | None:
    return client.select_one(TENANTS_TABLE, tenant_id).unwrap()


def get_tenant_for_lease(client: BackendClient, lease: dict | None) -> dict | None:
    """The referenced tenant row when there is one, otherwise the tenant embedded on the lease."""
    if not lease:
        return None
    if lease.get('tenant_id'):
        tenant = get_tenant(client, lease['tenant_id'])
        if tenant:
            return tenant
    return tenant_from_lease(lease)


def get_owned_tenant(client: BackendClient, user_id: str, tenant_id: str) -> dict | None:
    """The tenant row when it belongs to `user_id`, otherwise None."""
    tenant = get_tenant(client, tenant_id)
    if tenant is None or tenant.get('user_id') != user_id:
        return None
    return tenant


def create_tenant(client: BackendClient, user_id: str, data: dict) -> dict:
    ensure_valid(data, TENANT_FORM_RULES)
    row = {k: data[k] for k in TENANT_FIELDS if k in data}
    row['user_id'] = user_id
    return client.insert(TENANTS_TABLE, row).unwrap()


def update_tenant(client: BackendClient, tenant_id: str, updates: dict) -> dict:
    existing = get_tenant(client, tenant_id) or {}
    ensure_valid({**existing, **updates}, TENANT_FORM_RULES)
    return client.update(TENANTS_TABLE, tenant_id, {k: updates[k] for k in TENANT_FIELDS if k in updates}).unwrap()


def delete_tenant(client: BackendClient, tenant_id: str) -> None:
    client.delete(TENANTS_TABLE, tenant_id).unwrap()
