import logging

from constants import TODO_TABLE
from logic.form_validation import ensure_valid, max_length, required
from services.db_service import BackendClient

log = logging.getLogger(__name__)

TODO_FORM_RULES = {
    'title': [required("Title is required"), max_length(200)],
}


def get_todos(client: BackendClient, owner: str, done: bool = None) -> list:
    filters = [('owner', 'eq', owner)]
    if done is not None:
        filters.append(('done', 'eq', done))
    return client.select(TODO_TABLE, filters, order_by='created_at', descending=True).unwrap() or []


def get_todo(client: BackendClient, owner: str, todo_id: str) -> dict | None:
    row = client.select_one(TODO_TABLE, todo_id).unwrap()
    if row is None or row.get('owner') != owner:
        return None
    return row


def create_todo(client: BackendClient, owner: str, title: str, description: str = None, urgent: bool = False) -> dict:
    ensure_valid({'title': title}, TODO_FORM_RULES)
    return client.insert(TODO_TABLE, {
        'owner': owner,
        'title': title.strip(),
        'description': description,
        'urgent': bool(urgent),
        'done': False,
    }).unwrap()


def mark_done(client: BackendClient, todo_id: str, done: bool = True) -> dict:
    return client.update(TODO_TABLE, todo_id, {'done': done}).unwrap()


def delete_todo(client: BackendClient, todo_id: str) -> None:
    client.delete(TODO_TABLE, todo_id).unwrap()
