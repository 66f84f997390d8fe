import os
import logging
from logging.handlers import RotatingFileHandler

from dotenv import load_dotenv

load_dotenv()

# ENVIRONMENT: development | production | test
ENVIRONMENT = os.getenv('ENVIRONMENT', 'development')
PORT = int(os.getenv('PORT', 8080))

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
LOG_DIR = os.getenv('LOG_DIR', 'logs')

# COMMA SEPARATED, '*' = ALLOW ALL (DEV)
CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*')

JWT_SECRET = os.getenv('JWT_SECRET', 'dev-secret-change-me')
JWT_EXPIRY_HOURS = int(os.getenv('JWT_EXPIRY_HOURS', 24 * 7))

# FIREBASE
FIREBASE_CREDENTIALS = os.getenv('FIREBASE_CREDENTIALS') or os.getenv('GOOGLE_APPLICATION_CREDENTIALS') or 'serviceAccountKey.json'
FIREBASE_PROJECT_ID = os.getenv('FIREBASE_PROJECT_ID') or os.getenv('GCP_PROJECT_ID')
FIREBASE_STORAGE_BUCKET = os.getenv('FIREBASE_STORAGE_BUCKET') or os.getenv('GCS_BUCKET_NAME')
# WEB API KEY, ONLY NEEDED FOR EMAIL/PASSWORD LOGIN
FIREBASE_API_KEY = os.getenv('FIREBASE_API_KEY')

# WHATSAPP
SHOP_WHATSAPP_NUMBER = os.getenv('SHOP_WHATSAPP_NUMBER', '916372362313')
TWILIO_ACCOUNT_SID = os.getenv('TWILIO_ACCOUNT_SID')
TWILIO_AUTH_TOKEN = os.getenv('TWILIO_AUTH_TOKEN')
TWILIO_WHATSAPP_FROM = os.getenv('TWILIO_WHATSAPP_FROM')

# RAZORPAY
RAZORPAY_KEY_ID = os.getenv('RAZORPAY_KEY_ID')
RAZORPAY_KEY_SECRET = os.getenv('RAZORPAY_KEY_SECRET')
RAZORPAY_WEBHOOK_SECRET = os.getenv('RAZORPAY_WEBHOOK_SECRET')

# 10MB REQUEST BODY
MAX_CONTENT_LENGTH = int(os.getenv('MAX_CONTENT_LENGTH', 10 * 1024 * 1024))
MAX_IMAGE_SIZE = 5 * 1024 * 1024


def is_development() -> bool:
    return ENVIRONMENT == 'development'


def setup_logging():
    """Console output plus rotating combined/error log files."""
    root = logging.getLogger()
    if getattr(root, '_pja_configured', False):
        return
    root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s', '%Y-%m-%d %H:%M:%S')

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if ENVIRONMENT != 'test':
        os.makedirs(LOG_DIR, exist_ok=True)
        combined = RotatingFileHandler(os.path.join(LOG_DIR, 'combined.log'), maxBytes=5 * 1024 * 1024, backupCount=5)
        combined.setFormatter(formatter)
        root.addHandler(combined)

        errors = RotatingFileHandler(os.path.join(LOG_DIR, 'error.log'), maxBytes=5 * 1024 * 1024, backupCount=5)
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        root.addHandler(errors)

    root._pja_configured = True
