import logging

from .alert_store import AlertStore
from .exceptions import AuthenticationRequired, NotAlertOwner

logger = logging.getLogger(__name__)


class AuthorizationGuard:
    """Checks that the caller owns the alert before any dispatch side effect happens."""

    def __init__(self, store=None):
        self.store = store or AlertStore()

    def authorize(self, user, alert_id):
        if user is None or not user.is_authenticated:
            raise AuthenticationRequired()
        alert = self.store.get(alert_id)
        if alert.owner_id != user.pk:
            logger.warning(f"User {user.pk} attempted to act on alert {alert_id} owned by {alert.owner_id}")
            raise NotAlertOwner()
        return alert
