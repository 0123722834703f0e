# functions/constants.py

import os

DATA_ROOT = os.environ.get('DATA_ROOT', 'PropertyPilot')

PROPERTIES_TABLE = 'properties'
ADDRESSES_TABLE = 'addresses'
LEASES_TABLE = 'leases'
TENANTS_TABLE = 'tenants'
TRANSACTIONS_TABLE = 'transactions'
MAINTENANCE_TASKS_TABLE = 'maintenance_tasks'
DOCUMENTS_TABLE = 'documents'
USERS_TABLE = 'users'
TODO_TABLE = 'todo_list'

TABLES = frozenset({
    PROPERTIES_TABLE,
    ADDRESSES_TABLE,
    LEASES_TABLE,
    TENANTS_TABLE,
    TRANSACTIONS_TABLE,
    MAINTENANCE_TASKS_TABLE,
    DOCUMENTS_TABLE,
    USERS_TABLE,
    TODO_TABLE,
})

# Enums mirrored from the database schema
PROPERTY_TYPES = ('apartment', 'house', 'duplex', 'condo', 'commercial', 'land', 'other')
PAYMENT_FREQUENCIES = ('monthly', 'weekly', 'biweekly', 'quarterly', 'annually')
PRIORITIES = ('low', 'medium', 'high')
TASK_STATUSES = ('open', 'in_progress', 'completed')
TRANSACTION_TYPES = ('expense', 'income')
TRANSACTION_CATEGORIES = (
    'rent', 'utilities', 'maintenance', 'property_tax', 'insurance',
    'management_fee', 'deposit', 'legal', 'other',
)
DOCUMENT_TYPES = (
    'lease_agreement', 'id_verification', 'insurance', 'payment_receipt',
    'maintenance', 'property_photo', 'utility_bill', 'tax_document', 'other',
)
USER_PLANS = ('starter', 'pro', 'scale')

DEFAULT_CURRENCY = 'USD'
DEFAULT_PAYMENT_FREQUENCY = 'monthly'
DEFAULT_PAYMENT_DUE_DAY = 1

# Storage
STORAGE_BUCKET = os.environ.get('FIREBASE_STORAGE_BUCKET')
DOWNLOAD_URL_EXPIRY_SECONDS = int(os.environ.get('SIGNED_URL_DOWNLOAD_SECONDS', 60))
SHARE_URL_EXPIRY_SECONDS = int(os.environ.get('SIGNED_URL_SHARE_SECONDS', 86400))

ENRICHMENT_MAX_WORKERS = int(os.environ.get('ENRICHMENT_MAX_WORKERS', 4))

LOAD_PROPERTIES_ERROR = "Failed to load properties or details."
