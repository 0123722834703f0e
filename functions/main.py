from firebase_functions import https_fn
from firebase_functions.options import set_global_options
from firebase_admin import initialize_app
import firebase_admin
import functools
import json
import logging
import os

from constants import STORAGE_BUCKET
from logic.enrichment import PropertyEnricher, property_card
from logic.financial_logic import summarize_transactions
from logic.form_validation import FormValidationError
from logic.lease_logic import days_left_in_lease, lease_to_form, split_leases, tenant_full_name
from services import (
    auth_service,
    financial_service,
    lease_service,
    maintenance_service,
    property_service,
    storage_service,
    todo_service,
    user_service,
)
from services.app_state import AppState
from services.auth_service import SIGNED_OUT, AuthError, AuthStateNotifier
from services.db_service import BackendClient, BackendError
from services.lease_service import LeaseOverlapError
from utils.pagination import paginate_items
from utils.template_renderer import template_env


# Set up a module-level logger
log = logging.getLogger(__name__)

# Global Firebase app initialization, including Realtime Database URL and bucket
firebase_options = {
    key: value for key, value in (
        ('databaseURL', os.environ.get('FIREBASE_DATABASE_URL')),
        ('storageBucket', STORAGE_BUCKET),
    ) if value
}
try:
    firebase_admin.get_app()
except ValueError:
    initialize_app(options=firebase_options or None)
set_global_options(max_instances=10)

backend_client = BackendClient()
enricher = PropertyEnricher(backend_client)
auth_notifier = AuthStateNotifier()


def _forget_signed_out_user(event: str, user: dict | None) -> None:
    if event == SIGNED_OUT and user:
        enricher.invalidate(user_id=user['uid'])


auth_notifier.subscribe(_forget_signed_out_user)


class NotFoundError(Exception):
    pass


# --- request helpers --------------------------------------------------------------

def _json(payload, status: int = 200) -> https_fn.Response:
    return https_fn.Response(json.dumps(payload, default=str), status=status,
                             headers={"Content-Type": "application/json"})


def _error(message: str, status: int) -> https_fn.Response:
    return _json({'error': message}, status)


def handles_errors(handler):
    """Maps the exceptions raised by services onto HTTP responses."""
    @functools.wraps(handler)
    def wrapper(req: https_fn.Request) -> https_fn.Response:
        try:
            return handler(req)
        except FormValidationError as e:
            return _json({'error': str(e), 'errors': e.errors}, 400)
        except LeaseOverlapError as e:
            return _error(str(e), 409)
        except AuthError as e:
            return _error(str(e), e.status)
        except NotFoundError as e:
            return _error(str(e), 404)
        except BackendError as e:
            log.error(f"Backend error in {handler.__name__}: {e}")
            return _error(str(e), 502)
        except Exception as e:
            log.error(f"An unexpected error occurred in {handler.__name__}: {e}")
            return _error("An error occurred.", 500)
    return wrapper


def _body(req: https_fn.Request) -> dict:
    return req.get_json(silent=True) or {}


def _required_arg(req: https_fn.Request, name: str) -> str:
    value = req.args.get(name)
    if not value:
        raise FormValidationError({name: f"{name} is required"})
    return value


def _page_args(req: https_fn.Request) -> tuple:
    try:
        return int(req.args.get('page', 1)), int(req.args.get('page_size', 10))
    except ValueError:
        raise FormValidationError({'page': "Page and page size must be whole numbers"})


def _current_user(req: https_fn.Request) -> dict:
    return auth_service.get_session(auth_service.bearer_token(req.headers))


def _require_property(user: dict, property_id: str) -> dict:
    prop = property_service.get_property(backend_client, user['uid'], property_id)
    if prop is None:
        raise NotFoundError("Property not found.")
    return prop


def _require_owned(user: dict, row: dict | None, what: str) -> dict:
    """Checks that a property-scoped row exists and belongs to one of the user's properties."""
    if row is None:
        raise NotFoundError(f"{what} not found.")
    _require_property(user, row['property_id'])
    return row


def _require_lease(prop: dict, lease_id: str) -> dict:
    """The lease when it belongs to `prop`; leases of other properties are not found here."""
    lease = lease_service.get_lease(backend_client, lease_id)
    if lease is None or lease.get('property_id') != prop['id']:
        raise NotFoundError("Lease not found.")
    return lease


def _method_not_allowed() -> https_fn.Response:
    return _error("Method not allowed.", 405)


def _dashboard_payload(state: AppState, page: int = 1, page_size: int = 10) -> dict:
    cards = [property_card(e) for e in state.properties_by_id.values()]
    page_cards, pagination = paginate_items(cards, page, page_size)
    return {'properties': page_cards, 'pagination': pagination, 'error': state.error}


def _leases_payload(property_id: str) -> dict:
    leases = lease_service.get_leases_by_property(backend_client, property_id)
    current, past = split_leases(leases)
    return {'active_lease': current, 'past_leases': past}


# --- authentication ---------------------------------------------------------------

@https_fn.on_request()
@handles_errors
def auth_sign_up(req: https_fn.Request) -> https_fn.Response:
    if req.method != 'POST':
        return _method_not_allowed()
    data = _body(req)
    result = auth_service.sign_up(backend_client, data.get('email'), data.get('password'), template_env,
                                  full_name=data.get('full_name'))
    return _json(result, 201)


@https_fn.on_request()
@handles_errors
def auth_sign_in(req: https_fn.Request) -> https_fn.Response:
    if req.method != 'POST':
        return _method_not_allowed()
    data = _body(req)
    return _json(auth_service.sign_in(data.get('email'), data.get('password'), auth_notifier))


@https_fn.on_request()
@handles_errors
def auth_sign_out(req: https_fn.Request) -> https_fn.Response:
    if req.method != 'POST':
        return _method_not_allowed()
    auth_service.sign_out(_current_user(req), auth_notifier)
    return _json({'signed_out': True})


@https_fn.on_request()
@handles_errors
def auth_reset_password(req: https_fn.Request) -> https_fn.Response:
    if req.method != 'POST':
        return _method_not_allowed()
    if not auth_service.reset_password(_body(req).get('email'), template_env):
        return _error("Failed to send email.", 500)
    return _json({'sent': True})


@https_fn.on_request()
@handles_errors
def auth_session(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)
    return _json({'user': user, 'profile': user_service.get_user(backend_client, user['uid'])})


@https_fn.on_request()
@handles_errors
def user_profile(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)
    if req.method == 'GET':
        return _json({'profile': user_service.get_user(backend_client, user['uid'])})
    if req.method == 'PATCH':
        return _json({'profile': user_service.update_profile(backend_client, user['uid'], _body(req))})
    return _method_not_allowed()


# --- properties -------------------------------------------------------------------

@https_fn.on_request()
@handles_errors
def dashboard(req: https_fn.Request) -> https_fn.Response:
    """
    Property cards for the signed-in landlord, with a shared error message when some
    related data failed to load.
    """
    user = _current_user(req)
    page, page_size = _page_args(req)
    state = AppState(backend_client, enricher).load(user, force=req.args.get('refresh') == 'true')
    return _json(_dashboard_payload(state, page, page_size))


@https_fn.on_request()
@handles_errors
def property_details(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)
    prop = _require_property(user, _required_arg(req, 'propertyId'))
    lease_service.refresh_lease_statuses(backend_client, prop['id'])

    state = AppState(backend_client, enricher)
    state.user = user
    enriched = state.refresh_property(prop['id'])
    if enriched is None:
        raise NotFoundError("Property not found.")

    active_lease = enriched['raw_active_lease']
    return _json({
        'property': enriched,
        'card': property_card(enriched),
        'tenant_name': tenant_full_name(enriched['raw_tenant']),
        'days_left_in_lease': days_left_in_lease(active_lease['lease_end']) if active_lease else None,
        'lease_form': lease_to_form(active_lease) if active_lease else None,
        'financial_summary': summarize_transactions(enriched['raw_transactions'] or []),
        'error': state.error,
    })


@https_fn.on_request()
@handles_errors
def properties(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)
    state = AppState(backend_client, enricher)
    state.user = user
    data = _body(req)

    if req.method == 'POST':
        created = property_service.create_property(backend_client, user['uid'], data.get('property') or {},
                                                   data.get('address'))
        state.invalidate()
        return _json({'property': created, **_dashboard_payload(state.refresh())}, 201)

    prop = _require_property(user, _required_arg(req, 'propertyId'))
    if req.method == 'PATCH':
        updated = property_service.update_property(backend_client, prop, data.get('property') or {},
                                                   data.get('address'))
        state.invalidate(prop['id'])
        return _json({'property': updated, **_dashboard_payload(state.refresh())})
    if req.method == 'DELETE':
        property_service.delete_property(backend_client, prop, delete_files=storage_service.delete_property_files)
        state.invalidate(prop['id'])
        return _json({'deleted': prop['id'], **_dashboard_payload(state.refresh())})
    return _method_not_allowed()


# --- leases and tenants -----------------------------------------------------------

@https_fn.on_request()
@handles_errors
def leases(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)
    prop = _require_property(user, _required_arg(req, 'propertyId'))

    if req.method == 'GET':
        return _json(_leases_payload(prop['id']))

    if req.method == 'POST':
        saved = lease_service.save_lease(backend_client, prop['id'], _body(req))
        status = 201
    elif req.method == 'PATCH':
        lease = _require_lease(prop, _required_arg(req, 'leaseId'))
        saved = lease_service.save_lease(backend_client, prop['id'], _body(req), lease_id=lease['id'])
        status = 200
    elif req.method == 'DELETE':
        lease = _require_lease(prop, _required_arg(req, 'leaseId'))
        lease_service.delete_lease(backend_client, lease['id'])
        saved, status = None, 200
    else:
        return _method_not_allowed()

    enricher.invalidate(user_id=user['uid'], property_id=prop['id'])
    return _json({'lease': saved, **_leases_payload(prop['id'])}, status)


@https_fn.on_request()
@handles_errors
def tenants(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)
    if req.method == 'POST':
        return _json({'tenant': lease_service.create_tenant(backend_client, user['uid'], _body(req))}, 201)

    tenant_id = _required_arg(req, 'tenantId')
    tenant = lease_service.get_owned_tenant(backend_client, user['uid'], tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found.")
    if req.method == 'GET':
        return _json({'tenant': tenant})
    if req.method == 'PATCH':
        return _json({'tenant': lease_service.update_tenant(backend_client, tenant_id, _body(req))})
    if req.method == 'DELETE':
        lease_service.delete_tenant(backend_client, tenant_id)
        return _json({'deleted': tenant_id})
    return _method_not_allowed()


# --- finances ---------------------------------------------------------------------

@https_fn.on_request()
@handles_errors
def transactions(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)

    if req.method in ('GET', 'POST'):
        prop = _require_property(user, _required_arg(req, 'propertyId'))
        if req.method == 'POST':
            created = financial_service.create_transaction(backend_client, prop['id'], _body(req))
            enricher.invalidate(property_id=prop['id'])
            return _json({'transaction': created,
                          'transactions': financial_service.get_transactions(backend_client, prop['id'])}, 201)
        page, page_size = _page_args(req)
        rows = financial_service.get_transactions(backend_client, prop['id'], req.args.get('type'))
        page_rows, pagination = paginate_items(rows, page, page_size)
        return _json({'transactions': page_rows, 'pagination': pagination})

    transaction = _require_owned(
        user, financial_service.get_transaction(backend_client, _required_arg(req, 'transactionId')), "Transaction")
    if req.method == 'PATCH':
        saved = financial_service.update_transaction(backend_client, transaction, _body(req))
    elif req.method == 'DELETE':
        financial_service.delete_transaction(backend_client, transaction['id'])
        saved = None
    else:
        return _method_not_allowed()
    enricher.invalidate(property_id=transaction['property_id'])
    return _json({'transaction': saved,
                  'transactions': financial_service.get_transactions(backend_client, transaction['property_id'])})


@https_fn.on_request()
@handles_errors
def financial_summary(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)
    prop = _require_property(user, _required_arg(req, 'propertyId'))
    return _json(financial_service.get_financial_summary(backend_client, prop['id']))


@https_fn.on_request()
@handles_errors
def transaction_receipt(req: https_fn.Request) -> https_fn.Response:
    """
    POST renders and stores a PDF receipt for a transaction; GET streams the stored PDF
    so the storage path is never handed to the client.
    """
    user = _current_user(req)
    transaction = _require_owned(
        user, financial_service.get_transaction(backend_client, _required_arg(req, 'transactionId')), "Transaction")

    if req.method == 'POST':
        path = financial_service.create_receipt(backend_client, user['uid'], transaction)
        return _json({'receipt_url': path}, 201)
    if req.method != 'GET':
        return _method_not_allowed()

    if not transaction.get('receipt_url'):
        raise NotFoundError("Receipt not found.")
    pdf_content = storage_service.download_from_storage(transaction['receipt_url'])
    if pdf_content is None:
        raise NotFoundError("Receipt file not found in storage.")
    log.info(f"Streaming receipt PDF for transaction {transaction['id']} directly to client.")
    return https_fn.Response(pdf_content, headers={"Content-Type": "application/pdf"}, status=200)


# --- maintenance ------------------------------------------------------------------

def _with_overdue_flag(tasks: list) -> list:
    return [{**t, 'is_overdue': maintenance_service.is_task_overdue(t)} for t in tasks]


@https_fn.on_request()
@handles_errors
def maintenance_tasks(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)

    if req.method in ('GET', 'POST'):
        prop = _require_property(user, _required_arg(req, 'propertyId'))
        if req.method == 'POST':
            created = maintenance_service.create_task(backend_client, prop['id'], _body(req))
            enricher.invalidate(property_id=prop['id'])
            return _json({'task': created,
                          'tasks': _with_overdue_flag(maintenance_service.get_tasks(backend_client, prop['id']))}, 201)
        page, page_size = _page_args(req)
        rows = maintenance_service.get_tasks(backend_client, prop['id'], req.args.get('status'))
        page_rows, pagination = paginate_items(_with_overdue_flag(rows), page, page_size)
        return _json({'tasks': page_rows, 'pagination': pagination})

    task = _require_owned(user, maintenance_service.get_task(backend_client, _required_arg(req, 'taskId')), "Task")
    if req.method == 'PATCH':
        data = _body(req)
        if data.get('toggle'):
            saved = maintenance_service.toggle_task_status(backend_client, task)
        else:
            saved = maintenance_service.update_task(backend_client, task, data)
    elif req.method == 'DELETE':
        maintenance_service.delete_task(backend_client, task['id'])
        saved = None
    else:
        return _method_not_allowed()
    enricher.invalidate(property_id=task['property_id'])
    return _json({'task': saved,
                  'tasks': _with_overdue_flag(maintenance_service.get_tasks(backend_client, task['property_id']))})


# --- documents --------------------------------------------------------------------

@https_fn.on_request()
@handles_errors
def documents(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)
    prop = _require_property(user, _required_arg(req, 'propertyId'))
    uid, property_id = user['uid'], prop['id']

    if req.method == 'GET':
        filename = req.args.get('filename')
        if filename:
            mode = req.args.get('mode', 'download')
            if mode == 'share':
                return _json({'url': storage_service.get_share_url(uid, property_id, filename)})
            return _json({'url': storage_service.get_download_url(uid, property_id, filename)})
        return _json({
            'documents': storage_service.get_documents_by_property(backend_client, property_id),
            'files': storage_service.get_files(uid, property_id),
        })

    if req.method == 'POST':
        upload = req.files.get('file')
        if upload is None or not upload.filename:
            raise FormValidationError({'file': "Please choose a file to upload"})
        saved = storage_service.upload_file(
            backend_client, uid, property_id, upload.filename, upload.read(),
            content_type=upload.mimetype, document_type=req.form.get('document_type') or 'other',
            lease_id=req.form.get('lease_id'), tenant_id=req.form.get('tenant_id'),
        )
        status = 201
    elif req.method == 'PATCH':
        data = _body(req)
        if not data.get('old_name') or not data.get('new_name'):
            raise FormValidationError({'new_name': "Both the current and the new file name are required"})
        saved = storage_service.rename_file(backend_client, uid, property_id, data['old_name'], data['new_name'],
                                            data.get('document_type'))
        status = 200
    elif req.method == 'DELETE':
        storage_service.delete_file(backend_client, uid, property_id, _required_arg(req, 'filename'))
        saved, status = None, 200
    else:
        return _method_not_allowed()

    enricher.invalidate(property_id=property_id)
    return _json({'document': saved,
                  'documents': storage_service.get_documents_by_property(backend_client, property_id)}, status)


# --- todo list --------------------------------------------------------------------

@https_fn.on_request()
@handles_errors
def todo_tasks(req: https_fn.Request) -> https_fn.Response:
    user = _current_user(req)
    owner = user['uid']

    if req.method == 'GET':
        done = req.args.get('done')
        return _json({'todos': todo_service.get_todos(backend_client, owner, None if done is None else done == 'true')})

    if req.method == 'POST':
        data = _body(req)
        created = todo_service.create_todo(backend_client, owner, data.get('title') or '', data.get('description'),
                                           bool(data.get('urgent')))
        return _json({'todo': created, 'todos': todo_service.get_todos(backend_client, owner)}, 201)

    todo_id = _required_arg(req, 'id')
    if todo_service.get_todo(backend_client, owner, todo_id) is None:
        raise NotFoundError("Task not found.")
    if req.method == 'PATCH':
        saved = todo_service.mark_done(backend_client, todo_id, bool(_body(req).get('done', True)))
    elif req.method == 'DELETE':
        todo_service.delete_todo(backend_client, todo_id)
        saved = None
    else:
        return _method_not_allowed()
    return _json({'todo': saved, 'todos': todo_service.get_todos(backend_client, owner)})
