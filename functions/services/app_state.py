import logging

from logic.enrichment import CancellationToken, PropertyEnricher, RequestCancelled
from services.auth_service import SIGNED_IN, SIGNED_OUT, AuthStateNotifier
from services.db_service import BackendClient, BackendError

log = logging.getLogger(__name__)


class AppState:
    """
    Per-session state shared by the handlers of one signed-in user: the user, their
    enriched properties keyed by id and the last load error.
    """

    def __init__(self, client: BackendClient, enricher: PropertyEnricher, notifier: AuthStateNotifier = None):
        self.client = client
        self.enricher = enricher
        self.user = None
        self.properties_by_id = {}
        self.error = None
        self._unsubscribe = notifier.subscribe(self._on_auth_change) if notifier is not None else None

    def _on_auth_change(self, event: str, user: dict | None) -> None:
        if event == SIGNED_OUT and self.user and user and user.get('uid') == self.user.get('uid'):
            self.clear()
        elif event == SIGNED_IN and self.user is None:
            self.user = user

    def load(self, user: dict, token: CancellationToken = None, force: bool = False) -> 'AppState':
        self.user = user
        try:
            result = self.enricher.load_user_properties(user['uid'], token=token, force=force)
        except RequestCancelled:
            log.info(f"Property load for user {user['uid']} was cancelled.")
            return self
        except BackendError as e:
            log.error(f"Error loading properties for user {user['uid']}: {e}")
            self.properties_by_id = {}
            self.error = str(e)
            return self
        self.properties_by_id = dict(result.properties_by_id)
        self.error = result.error
        return self

    def refresh(self, token: CancellationToken = None) -> 'AppState':
        if self.user is None:
            return self
        return self.load(self.user, token=token, force=True)

    def refresh_property(self, property_id: str, token: CancellationToken = None) -> dict | None:
        """Reloads one property with all its details, replacing any cached dashboard entry."""
        if self.user is not None:
            self.enricher.invalidate(user_id=self.user['uid'])
        result = self.enricher.load_property(property_id, token=token, force=True)
        enriched = result.properties_by_id.get(property_id)
        if enriched is None:
            self.properties_by_id.pop(property_id, None)
        else:
            self.properties_by_id[property_id] = enriched
        self.error = result.error
        return enriched

    def invalidate(self, property_id: str = None) -> None:
        """Drops cached loads after a mutation so the next read sees it."""
        self.enricher.invalidate(user_id=self.user['uid'] if self.user else None, property_id=property_id)

    def clear(self) -> None:
        if self.user is not None:
            self.enricher.invalidate(user_id=self.user['uid'])
        self.user = None
        self.properties_by_id = {}
        self.error = None

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
