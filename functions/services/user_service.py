import logging

from constants import USER_PLANS, USERS_TABLE
from logic.form_validation import ensure_valid, max_length, one_of, phone
from services.db_service import BackendClient

log = logging.getLogger(__name__)

PROFILE_FIELDS = ('full_name', 'company_name', 'phone', 'timezone', 'onboarding_completed', 'user_plan')

PROFILE_FORM_RULES = {
    'full_name': [max_length(120)],
    'company_name': [max_length(120)],
    'phone': [phone()],
    'user_plan': [one_of(USER_PLANS)],
}


def get_user(client: BackendClient, uid: str) -> dict | None:
    return client.select_one(USERS_TABLE, uid).unwrap()


def create_user_profile(client: BackendClient, uid: str, email: str, full_name: str = None) -> dict:
    """Creates the profile row for a new account, keyed by its auth uid."""
    return client.insert(USERS_TABLE, {
        'email': email,
        'full_name': full_name,
        'onboarding_completed': False,
        'user_plan': 'starter',
    }, row_id=uid).unwrap()


def update_profile(client: BackendClient, uid: str, updates: dict) -> dict:
    ensure_valid(updates, PROFILE_FORM_RULES)
    fields = {k: updates[k] for k in PROFILE_FIELDS if k in updates}
    log.info(f"Updating profile fields {sorted(fields)} for user {uid}.")
    return client.update(USERS_TABLE, uid, fields).unwrap()
