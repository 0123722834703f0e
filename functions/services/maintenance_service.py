import logging
from datetime import date

from constants import MAINTENANCE_TASKS_TABLE, PRIORITIES, TASK_STATUSES
from logic.form_validation import ensure_valid, max_length, one_of, required, valid_date
from logic.lease_logic import parse_lease_date
from services.db_service import BackendClient

log = logging.getLogger(__name__)

TASK_FIELDS = ('title', 'description', 'task_status', 'priority', 'due_date')

TASK_FORM_RULES = {
    'title': [required("Task title is required"), max_length(200)],
    'task_status': [one_of(TASK_STATUSES)],
    'priority': [one_of(PRIORITIES)],
    'due_date': [valid_date()],
}


def is_task_overdue(task: dict, today: date = None) -> bool:
    """A task is overdue when it is not completed and its due date is before today."""
    if task.get('task_status') == 'completed':
        return False
    due = parse_lease_date(task.get('due_date'))
    return due is not None and due < (today or date.today())


def get_tasks(client: BackendClient, property_id: str, status: str = None) -> list:
    filters = [('property_id', 'eq', property_id)]
    if status:
        filters.append(('task_status', 'eq', status))
    return client.select(MAINTENANCE_TASKS_TABLE, filters, order_by='created_at', descending=True).unwrap() or []


def get_task(client: BackendClient, task_id: str) -> dict | None:
    return client.select_one(MAINTENANCE_TASKS_TABLE, task_id).unwrap()


def create_task(client: BackendClient, property_id: str, data: dict) -> dict:
    ensure_valid(data, TASK_FORM_RULES)
    row = {k: data[k] for k in TASK_FIELDS if k in data}
    row['property_id'] = property_id
    row.setdefault('task_status', 'open')
    row.setdefault('priority', 'medium')
    return client.insert(MAINTENANCE_TASKS_TABLE, row).unwrap()


def update_task(client: BackendClient, task: dict, updates: dict) -> dict:
    ensure_valid({**task, **updates}, TASK_FORM_RULES)
    return client.update(MAINTENANCE_TASKS_TABLE, task['id'], {k: updates[k] for k in TASK_FIELDS if k in updates}).unwrap()


def toggle_task_status(client: BackendClient, task: dict) -> dict:
    """Completed tasks reopen; anything else becomes completed."""
    new_status = 'open' if task.get('task_status') == 'completed' else 'completed'
    log.info(f"Task {task['id']}: {task.get('task_status')} -> {new_status}")
    return client.update(MAINTENANCE_TASKS_TABLE, task['id'], {'task_status': new_status}).unwrap()


def delete_task(client: BackendClient, task_id: str) -> None:
    client.delete(MAINTENANCE_TASKS_TABLE, task_id).unwrap()
