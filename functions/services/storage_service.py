import logging
import os
import re
from datetime import timedelta

from firebase_admin import storage

from constants import (
    DOCUMENT_TYPES,
    DOCUMENTS_TABLE,
    DOWNLOAD_URL_EXPIRY_SECONDS,
    SHARE_URL_EXPIRY_SECONDS,
    STORAGE_BUCKET,
)
from services.db_service import BackendClient, BackendError

log = logging.getLogger(__name__)

UNSAFE_FILENAME_CHARS = re.compile(r"[^0-9a-zA-Z!\-_.*'()]")


class StorageError(BackendError):
    """Raised when a Cloud Storage call fails."""


def _bucket():
    return storage.bucket(STORAGE_BUCKET) if STORAGE_BUCKET else storage.bucket()


def sanitize_filename(filename: str) -> str:
    """Keeps only characters that are safe in an object name; everything else becomes '_'."""
    return UNSAFE_FILENAME_CHARS.sub('_', os.path.basename(filename or ''))


def property_folder(user_id: str, property_id: str) -> str:
    return f"{user_id}/{property_id}"


def file_path(user_id: str, property_id: str, filename: str) -> str:
    return f"{property_folder(user_id, property_id)}/{sanitize_filename(filename)}"


def upload_to_storage(file_bytes: bytes, path: str, content_type: str = 'application/pdf') -> bool:
    """
    Uploads raw bytes to Cloud Storage at `path`.
    Returns True if successful, False otherwise.
    """
    try:
        blob = _bucket().blob(path)
        blob.upload_from_string(file_bytes, content_type=content_type)
        log.info(f"Successfully uploaded {path}.")
        return True
    except Exception as e:
        log.error(f"Error uploading {path} to Cloud Storage: {e}")
        return False


def get_files(user_id: str, property_id: str) -> list:
    """Lists the objects stored for a property."""
    prefix = f"{property_folder(user_id, property_id)}/"
    try:
        blobs = list(_bucket().list_blobs(prefix=prefix))
    except Exception as e:
        log.error(f"Error listing files under {prefix}: {e}")
        raise StorageError(str(e))
    return [
        {
            'name': blob.name[len(prefix):],
            'full_path': blob.name,
            'size': blob.size,
            'content_type': blob.content_type,
            'updated': blob.updated.isoformat() if blob.updated else None,
        }
        for blob in blobs
        if blob.name != prefix
    ]


def get_documents_by_property(client: BackendClient, property_id: str) -> list:
    return client.select(
        DOCUMENTS_TABLE, [('property_id', 'eq', property_id)], order_by='created_at', descending=True,
    ).unwrap() or []


def upload_file(client: BackendClient, user_id: str, property_id: str, filename: str, file_bytes: bytes,
                content_type: str = None, document_type: str = 'other',
                lease_id: str = None, tenant_id: str = None) -> dict:
    """
    Stores a file under `<user>/<property>/<sanitised name>` and records it in the documents table.
    Returns the documents row.
    """
    if document_type not in DOCUMENT_TYPES:
        document_type = 'other'
    path = file_path(user_id, property_id, filename)
    content_type = content_type or 'application/octet-stream'
    if not upload_to_storage(file_bytes, path, content_type):
        raise StorageError(f"Failed to upload {sanitize_filename(filename)}")

    return client.insert(DOCUMENTS_TABLE, {
        'property_id': property_id,
        'lease_id': lease_id,
        'tenant_id': tenant_id,
        'file_name': sanitize_filename(filename),
        'mime_type': content_type,
        'file_size_kb': round(len(file_bytes) / 1024, 2),
        'document_type': document_type,
        'storage_full_path': path,
        'uploaded_by': user_id,
    }).unwrap()


def delete_file(client: BackendClient, user_id: str, property_id: str, filename: str) -> None:
    """Removes a stored file, then its documents row. The row stays if the object can't be deleted."""
    path = file_path(user_id, property_id, filename)
    try:
        _bucket().blob(path).delete()
    except Exception as e:
        log.error(f"Error deleting {path}: {e}")
        raise StorageError(str(e))
    client.delete_where(DOCUMENTS_TABLE, [
        ('storage_full_path', 'eq', path),
        ('property_id', 'eq', property_id),
    ]).unwrap()
    log.info(f"Deleted file {path}.")


def rename_file(client: BackendClient, user_id: str, property_id: str, old_name: str, new_name: str,
                document_type: str = None) -> dict:
    """Moves a stored file to a new name and points its documents row at the new path."""
    old_path = file_path(user_id, property_id, old_name)
    new_path = file_path(user_id, property_id, new_name)
    try:
        bucket = _bucket()
        bucket.rename_blob(bucket.blob(old_path), new_path)
    except Exception as e:
        log.error(f"Error renaming {old_path} to {new_path}: {e}")
        raise StorageError(str(e))

    changes = {'file_name': sanitize_filename(new_name), 'storage_full_path': new_path}
    if document_type in DOCUMENT_TYPES:
        changes['document_type'] = document_type
    rows = client.select(DOCUMENTS_TABLE, [('storage_full_path', 'eq', old_path)]).unwrap()
    if rows:
        return client.update(DOCUMENTS_TABLE, rows[0]['id'], changes).unwrap()
    log.warning(f"No document row for {old_path}; creating one for {new_path}.")
    return client.insert(DOCUMENTS_TABLE, {
        **changes,
        'property_id': property_id,
        'uploaded_by': user_id,
        'document_type': changes.get('document_type', 'other'),
    }).unwrap()


def create_signed_url(path: str, expires_in_seconds: int, download: bool = False) -> str:
    """
    Time-limited GET URL for an object. With `download` the browser is told to save
    the file instead of displaying it.
    """
    filename = path.rsplit('/', 1)[-1]
    disposition = f'attachment; filename="{filename}"' if download else 'inline'
    try:
        return _bucket().blob(path).generate_signed_url(
            version='v4',
            expiration=timedelta(seconds=expires_in_seconds),
            method='GET',
            response_disposition=disposition,
        )
    except Exception as e:
        log.error(f"Error signing URL for {path}: {e}")
        raise StorageError(str(e))


def get_download_url(user_id: str, property_id: str, filename: str) -> str:
    return create_signed_url(file_path(user_id, property_id, filename), DOWNLOAD_URL_EXPIRY_SECONDS, download=True)


def get_share_url(user_id: str, property_id: str, filename: str) -> str:
    return create_signed_url(file_path(user_id, property_id, filename), SHARE_URL_EXPIRY_SECONDS)


def delete_property_files(property_row: dict) -> int:
    """Deletes every object stored for a property. Returns how many were removed."""
    prefix = f"{property_folder(property_row['user_id'], property_row['id'])}/"
    try:
        bucket = _bucket()
        blobs = list(bucket.list_blobs(prefix=prefix))
        for blob in blobs:
            blob.delete()
    except Exception as e:
        log.error(f"Error deleting files under {prefix}: {e}")
        raise StorageError(str(e))
    log.info(f"Deleted {len(blobs)} files under {prefix}.")
    return len(blobs)


def download_from_storage(path: str) -> bytes | None:
    """Reads an object's bytes. Returns None when it doesn't exist."""
    blob = _bucket().blob(path)
    if not blob.exists():
        log.error(f"File not found in storage at: {path}")
        return None
    return blob.download_as_bytes()
