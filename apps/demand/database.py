import logging
import os
import threading

import firebase_admin
from firebase_admin import credentials, firestore

from .settings import settings

logger = logging.getLogger(__name__)

_db = None
_lock = threading.Lock()


def _initialize_app():
    # Initialize Firebase only once
    if firebase_admin._apps:
        return
    options = {}
    if settings.FIREBASE_PROJECT_ID:
        options["projectId"] = settings.FIREBASE_PROJECT_ID

    service_account_path = settings.FIREBASE_SERVICE_ACCOUNT_PATH
    if service_account_path and os.path.exists(service_account_path):
        cred = credentials.Certificate(service_account_path)
    else:
        logger.warning("Service account key not found at %s, using application default credentials", service_account_path)
        cred = credentials.ApplicationDefault()
    firebase_admin.initialize_app(cred, options or None)


def get_db():
    """Return the shared Firestore client, initializing firebase-admin on first use."""
    global _db
    if _db is None:
        with _lock:
            if _db is None:
                _initialize_app()
                _db = firestore.client()
    return _db
