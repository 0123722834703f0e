import os
import logging
from functools import lru_cache

from google.cloud import secretmanager
from google.api_core.exceptions import NotFound, PermissionDenied

# Set up a module-level logger
log = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _secret_client():
    return secretmanager.SecretManagerServiceClient()


_secrets = {}


def access_secret_version(secret_id, version_id="latest"):
    """Access the payload for the given secret version if one exists.

    Falls back to an environment variable of the same name, which is how local runs
    and the emulator supply secrets. Returns None when neither is available.
    """
    if (secret_id, version_id) in _secrets:
        return _secrets[(secret_id, version_id)]

    from_env = os.environ.get(secret_id)
    if from_env:
        return from_env.strip()

    project_id = os.environ.get('GCLOUD_PROJECT')  # Firebase automatically sets this
    if not project_id:
        log.error(f"GCLOUD_PROJECT not set and no {secret_id} in the environment.")
        return None

    name = f"projects/{project_id}/secrets/{secret_id}/versions/{version_id}"
    try:
        response = _secret_client().access_secret_version(request={"name": name})
        value = response.payload.data.decode("UTF-8").strip()
    except PermissionDenied as e:
        log.error(f"Permission denied when accessing secret '{secret_id}': {e}")
        log.error(f"Please ensure the service account has the 'Secret Manager Secret Accessor' role for secret '{secret_id}'.")
        return None
    except NotFound:
        log.error(f"Secret '{secret_id}' does not exist in project {project_id}.")
        return None

    _secrets[(secret_id, version_id)] = value
    return value
