import json
import logging
import os

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from .models import UserDevice

logger = logging.getLogger(__name__)

_firebase_app = None


def get_firebase_app():
    """Initialise Firebase on first use from FCM_SERVICE_ACCOUNT_KEY. Returns None if not configured."""
    global _firebase_app
    if _firebase_app is not None:
        return _firebase_app

    fcm_key_json = os.environ.get('FCM_SERVICE_ACCOUNT_KEY')
    if not fcm_key_json:
        logger.info("FCM_SERVICE_ACCOUNT_KEY not set. Push notifications disabled.")
        return None
    try:
        cred = credentials.Certificate(json.loads(fcm_key_json))
        _firebase_app = firebase_admin.initialize_app(cred)
        logger.info("Firebase initialized successfully")
    except (ValueError, exceptions.FirebaseError) as e:
        logger.error(f"Error initializing Firebase: {e}", exc_info=True)
        _firebase_app = None
    return _firebase_app


def send_push_to_user(user, title, body, data=None):
    """
    Push a notification to every active device of `user`.
    Returns the number of devices that accepted the message.
    """
    app = get_firebase_app()
    if not app:
        logger.debug(f"Firebase not initialized. Push to user {user.pk} not sent.")
        return 0

    data = {k: str(v) for k, v in (data or {}).items()}
    delivered = 0
    for device in UserDevice.objects.filter(user=user, is_active=True):
        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            token=device.device_token,
            data=data,
        )
        try:
            response = messaging.send(message, app=app)
            logger.info(f"Push sent to device {device.pk} of user {user.pk}: {response}")
            delivered += 1
        except messaging.UnregisteredError:
            logger.info(f"Device {device.pk} token is no longer registered; deactivating")
            UserDevice.objects.filter(pk=device.pk).update(is_active=False)
        except exceptions.FirebaseError as e:
            logger.warning(f"Push to device {device.pk} of user {user.pk} failed: {e}")
    return delivered
