import json
import logging
import os
from functools import lru_cache

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials, firestore

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def initialize_firebase() -> firebase_admin.App:
    """Initialize Firebase Admin SDK once, on first use."""

    # Method 1: Service Account Key from Environment Variable (Recommended for production)
    service_account_key_json = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY")
    if service_account_key_json:
        try:
            service_account_info = json.loads(service_account_key_json)
        except json.JSONDecodeError as e:
            logger.error(f"[FIREBASE] Error parsing FIREBASE_SERVICE_ACCOUNT_KEY: {e}")
        else:
            app = firebase_admin.initialize_app(credentials.Certificate(service_account_info))
            logger.info("[FIREBASE] Initialized with Service Account Key from environment variable.")
            return app

    # Method 2: Service Account Key File (for local development only)
    service_account_key_path = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY_PATH")
    if service_account_key_path and os.path.exists(service_account_key_path):
        app = firebase_admin.initialize_app(credentials.Certificate(service_account_key_path))
        logger.info("[FIREBASE] Initialized with Service Account Key from file path.")
        return app

    # Method 3: GOOGLE_APPLICATION_CREDENTIALS or default credentials
    app = firebase_admin.initialize_app()
    if os.getenv("GOOGLE_APPLICATION_CREDENTIALS"):
        logger.info("[FIREBASE] Initialized with GOOGLE_APPLICATION_CREDENTIALS.")
    else:
        logger.info("[FIREBASE] Initialized with default Application Default Credentials.")
    return app


def get_firestore_client():
    return firestore.client(app=initialize_firebase())


def verify_id_token(token: str) -> dict:
    return firebase_auth.verify_id_token(token, app=initialize_firebase())
