import unittest
from unittest.mock import patch, MagicMock
import sys
import os
import json
from freezegun import freeze_time

# Add the project root directory to the Python path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import main
from logic.enrichment import PropertyEnricher
from services.auth_service import AuthError
from services.db_service import BackendError
from sample_data import USER, lease_form, sample_client


class MockRequest:
    """Minimal stand-in for firebase_functions.https_fn.Request."""

    def __init__(self, method='GET', json_data=None, args_data=None, headers=None, files=None, form=None):
        self.method = method
        self._json_data = json_data
        self.args = args_data if args_data is not None else {}
        self.headers = headers if headers is not None else {'Authorization': 'Bearer test-token'}
        self.files = files or {}
        self.form = form or {}

    def get_json(self, silent=True):
        return self._json_data


def _payload(response):
    return json.loads(response.get_data(as_text=True))


@freeze_time("2024-03-01")
class EndpointTestCase(unittest.TestCase):

    def setUp(self):
        self.client = sample_client()
        self.enricher = PropertyEnricher(self.client, max_workers=2)
        patchers = [
            patch('main.backend_client', self.client),
            patch('main.enricher', self.enricher),
            patch('main.auth_service.get_session', return_value=dict(USER)),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)
        self.addCleanup(self.enricher.shutdown)


class TestErrorMapping(EndpointTestCase):

    def test_missing_session_is_unauthorized(self):
        with patch('main.auth_service.get_session', side_effect=AuthError("Missing bearer token")):
            response = main.dashboard(MockRequest(headers={}))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(_payload(response)['error'], "Missing bearer token")

    def test_backend_failure_is_bad_gateway(self):
        with patch('main.property_service.get_property', side_effect=BackendError("database offline")):
            response = main.financial_summary(MockRequest(args_data={'propertyId': 'prop-1'}))
        self.assertEqual(response.status_code, 502)

    def test_unexpected_error_is_generic(self):
        with patch('main.financial_service.get_financial_summary', side_effect=KeyError('boom')):
            response = main.financial_summary(MockRequest(args_data={'propertyId': 'prop-1'}))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(_payload(response)['error'], "An error occurred.")

    def test_missing_argument_is_bad_request(self):
        response = main.leases(MockRequest())
        self.assertEqual(response.status_code, 400)
        self.assertIn('propertyId', _payload(response)['errors'])

    def test_other_users_property_is_not_found(self):
        self.client.tables['properties']['prop-1']['user_id'] = 'someone-else'
        response = main.property_details(MockRequest(args_data={'propertyId': 'prop-1'}))
        self.assertEqual(response.status_code, 404)


class TestPropertyEndpoints(EndpointTestCase):

    def test_dashboard_lists_cards(self):
        response = main.dashboard(MockRequest())
        self.assertEqual(response.status_code, 200)
        body = _payload(response)
        cards = {card['id']: card for card in body['properties']}
        self.assertEqual(set(cards), {'prop-1', 'prop-2'})
        self.assertEqual(cards['prop-1']['address'], "12 Main St, #4, Springfield, IL, 62701")
        self.assertEqual(cards['prop-1']['status'], 'occupied')
        self.assertEqual(cards['prop-2']['status'], 'vacant')
        self.assertEqual(cards['prop-2']['address'], "Address not available")
        self.assertIsNone(body['error'])
        self.assertEqual(body['pagination']['total_items'], 2)

    def test_dashboard_pagination(self):
        body = _payload(main.dashboard(MockRequest(args_data={'page': '2', 'page_size': '1'})))
        self.assertEqual(len(body['properties']), 1)
        self.assertTrue(body['pagination']['has_prev_page'])

    def test_dashboard_reports_partial_failures(self):
        self.client.fail_on['leases'] = "permission denied"
        body = _payload(main.dashboard(MockRequest()))
        self.assertEqual(len(body['properties']), 2)
        self.assertEqual(body['error'], "Failed to load properties or details.")

    def test_property_details(self):
        response = main.property_details(MockRequest(args_data={'propertyId': 'prop-1'}))
        self.assertEqual(response.status_code, 200)
        body = _payload(response)
        self.assertEqual(body['tenant_name'], "Jane Doe")
        self.assertEqual(body['days_left_in_lease'], 121)
        self.assertEqual(body['financial_summary']['total_income'], 2400.0)
        self.assertEqual([l['id'] for l in body['property']['raw_past_leases']], ['lease-0'])
        self.assertEqual(body['lease_form']['first_name'], 'Jane')

    def test_create_property(self):
        req = MockRequest('POST', json_data={
            'property': {'title': 'Birch Flats', 'property_type': 'condo'},
            'address': {'street': 'Pine Rd', 'city': 'Denver', 'zip_code': '80202'},
        })
        response = main.properties(req)
        self.assertEqual(response.status_code, 201)
        body = _payload(response)
        self.assertEqual(body['property']['user_id'], 'user-1')
        self.assertEqual(len(body['properties']), 3)

    def test_create_property_validation(self):
        response = main.properties(MockRequest('POST', json_data={'property': {'title': ''}}))
        self.assertEqual(response.status_code, 400)
        self.assertIn('title', _payload(response)['errors'])

    def test_delete_property_removes_files_and_rows(self):
        with patch('main.storage_service.delete_property_files', return_value=0) as mock_delete_files:
            response = main.properties(MockRequest('DELETE', args_data={'propertyId': 'prop-1'}))
        self.assertEqual(response.status_code, 200)
        mock_delete_files.assert_called_once()
        self.assertNotIn('prop-1', self.client.tables['properties'])
        self.assertEqual(self.client.tables['leases'], {})
        self.assertEqual([c['id'] for c in _payload(response)['properties']], ['prop-2'])


class TestLeaseEndpoints(EndpointTestCase):

    def test_list_leases(self):
        body = _payload(main.leases(MockRequest(args_data={'propertyId': 'prop-1'})))
        self.assertEqual(body['active_lease']['id'], 'lease-1')
        self.assertEqual([l['id'] for l in body['past_leases']], ['lease-0'])

    def test_add_lease(self):
        req = MockRequest('POST', json_data=lease_form(), args_data={'propertyId': 'prop-1'})
        response = main.leases(req)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(_payload(response)['lease']['tenant_first_name'], 'Alice')

    def test_overlapping_lease_is_conflict(self):
        req = MockRequest('POST', json_data=lease_form(lease_start='2024-06-01'), args_data={'propertyId': 'prop-1'})
        response = main.leases(req)
        self.assertEqual(response.status_code, 409)
        self.assertIn("Jane Doe", _payload(response)['error'])
        self.assertEqual(len(self.client.tables['leases']), 2)

    def test_lease_of_another_property_is_not_found(self):
        req = MockRequest('PATCH', json_data=lease_form(lease_start='2023-06-01', lease_end='2023-09-30'),
                          args_data={'propertyId': 'prop-2', 'leaseId': 'lease-1'})
        response = main.leases(req)
        self.assertEqual(response.status_code, 404)
        lease = self.client.tables['leases']['lease-1']
        self.assertEqual((lease['lease_start'], lease['lease_end']), ('2024-01-01', '2024-06-30'))

        response = main.leases(MockRequest('DELETE', args_data={'propertyId': 'prop-2', 'leaseId': 'lease-1'}))
        self.assertEqual(response.status_code, 404)
        self.assertIn('lease-1', self.client.tables['leases'])

    def test_invalid_lease_form(self):
        req = MockRequest('POST', json_data=lease_form(rent_amount=''), args_data={'propertyId': 'prop-1'})
        response = main.leases(req)
        self.assertEqual(response.status_code, 400)
        self.assertIn('rent_amount', _payload(response)['errors'])


class TestTenantEndpoints(EndpointTestCase):

    def test_created_tenant_belongs_to_caller(self):
        response = main.tenants(MockRequest('POST', json_data={'first_name': 'Sam', 'last_name': 'Lee'}))
        self.assertEqual(response.status_code, 201)
        tenant = _payload(response)['tenant']
        self.assertEqual(tenant['user_id'], 'user-1')
        body = _payload(main.tenants(MockRequest(args_data={'tenantId': tenant['id']})))
        self.assertEqual(body['tenant']['first_name'], 'Sam')

    def test_other_users_tenant_is_not_found(self):
        self.client.tables['tenants']['t-1'] = {'id': 't-1', 'user_id': 'user-1',
                                                'first_name': 'Jane', 'last_name': 'Doe'}
        stranger = {**USER, 'uid': 'stranger'}
        with patch('main.auth_service.get_session', return_value=stranger):
            get_response = main.tenants(MockRequest(args_data={'tenantId': 't-1'}))
            patch_response = main.tenants(MockRequest('PATCH', json_data={'first_name': 'Eve'},
                                                      args_data={'tenantId': 't-1'}))
            delete_response = main.tenants(MockRequest('DELETE', args_data={'tenantId': 't-1'}))
        self.assertEqual(get_response.status_code, 404)
        self.assertEqual(patch_response.status_code, 404)
        self.assertEqual(delete_response.status_code, 404)
        self.assertEqual(self.client.tables['tenants']['t-1']['first_name'], 'Jane')


class TestFinanceAndTaskEndpoints(EndpointTestCase):

    def test_transactions_filtered_and_paginated(self):
        req = MockRequest(args_data={'propertyId': 'prop-1', 'type': 'income', 'page_size': '1'})
        body = _payload(main.transactions(req))
        self.assertEqual([t['id'] for t in body['transactions']], ['tx-3'])
        self.assertEqual(body['pagination']['total_items'], 2)

    def test_receipt_is_streamed(self):
        self.client.tables['transactions']['tx-1']['receipt_url'] = 'user-1/prop-1/receipts/tx-1.pdf'
        with patch('main.storage_service.download_from_storage', return_value=b'%PDF-1.4') as mock_download:
            response = main.transaction_receipt(MockRequest(args_data={'transactionId': 'tx-1'}))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers['Content-Type'], 'application/pdf')
        self.assertEqual(response.data, b'%PDF-1.4')
        mock_download.assert_called_once_with('user-1/prop-1/receipts/tx-1.pdf')

    def test_missing_receipt(self):
        response = main.transaction_receipt(MockRequest(args_data={'transactionId': 'tx-2'}))
        self.assertEqual(response.status_code, 404)

    def test_toggle_task(self):
        req = MockRequest('PATCH', json_data={'toggle': True}, args_data={'taskId': 'task-1'})
        body = _payload(main.maintenance_tasks(req))
        self.assertEqual(body['task']['task_status'], 'completed')
        self.assertFalse(body['tasks'][0]['is_overdue'])

    def test_open_task_past_due_is_flagged(self):
        self.client.tables['maintenance_tasks']['task-1']['due_date'] = '2024-02-01'
        body = _payload(main.maintenance_tasks(MockRequest(args_data={'propertyId': 'prop-1'})))
        self.assertTrue(body['tasks'][0]['is_overdue'])


class TestDocumentAndTodoEndpoints(EndpointTestCase):

    def test_upload_requires_file(self):
        response = main.documents(MockRequest('POST', args_data={'propertyId': 'prop-1'}))
        self.assertEqual(response.status_code, 400)

    def test_upload_document(self):
        upload = MagicMock(filename='lease.pdf', mimetype='application/pdf')
        upload.read.return_value = b'%PDF'
        req = MockRequest('POST', args_data={'propertyId': 'prop-1'}, files={'file': upload},
                          form={'document_type': 'lease_agreement'})
        with patch('services.storage_service.storage.bucket'):
            response = main.documents(req)
        self.assertEqual(response.status_code, 201)
        body = _payload(response)
        self.assertEqual(body['document']['storage_full_path'], 'user-1/prop-1/lease.pdf')
        self.assertEqual(len(body['documents']), 1)

    def test_share_link(self):
        with patch('main.storage_service.get_share_url', return_value='https://share') as mock_share:
            body = _payload(main.documents(MockRequest(args_data={
                'propertyId': 'prop-1', 'filename': 'lease.pdf', 'mode': 'share'})))
        self.assertEqual(body['url'], 'https://share')
        mock_share.assert_called_once_with('user-1', 'prop-1', 'lease.pdf')

    def test_todo_flow(self):
        created = _payload(main.todo_tasks(MockRequest('POST', json_data={'title': 'Call plumber'})))['todo']
        done = _payload(main.todo_tasks(MockRequest('PATCH', json_data={'done': True}, args_data={'id': created['id']})))
        self.assertTrue(done['todo']['done'])
        pending = _payload(main.todo_tasks(MockRequest(args_data={'done': 'false'})))
        self.assertEqual(pending['todos'], [])

    def test_unknown_todo(self):
        response = main.todo_tasks(MockRequest('DELETE', args_data={'id': 'nope'}))
        self.assertEqual(response.status_code, 404)


class TestAuthEndpoints(EndpointTestCase):

    def test_sign_in_requires_post(self):
        self.assertEqual(main.auth_sign_in(MockRequest('GET')).status_code, 405)

    @patch('main.auth_service.reset_password', return_value=False)
    def test_reset_password_failure(self, mock_reset_password):
        response = main.auth_reset_password(MockRequest('POST', json_data={'email': 'a@b.co'}))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(_payload(response)['error'], "Failed to send email.")

    @patch('main.auth_service.sign_out')
    def test_sign_out(self, mock_sign_out):
        response = main.auth_sign_out(MockRequest('POST'))
        self.assertEqual(response.status_code, 200)
        mock_sign_out.assert_called_once_with(USER, main.auth_notifier)


if __name__ == '__main__':
    unittest.main()
