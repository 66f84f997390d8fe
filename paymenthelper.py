import hmac
import hashlib
import logging

import requests

import config
from errors import AppError

logger = logging.getLogger(__name__)

RAZORPAY_ORDERS_URL = 'https://api.razorpay.com/v1/orders'


def _require_keys():
    if not (config.RAZORPAY_KEY_ID and config.RAZORPAY_KEY_SECRET):
        raise AppError('Payments are not configured', 503, 'PAYMENT_NOT_CONFIGURED')


def _hmac_hex(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def create_razorpay_order(amount: float, receipt: str, notes: dict = None) -> dict:
    """Create a Razorpay order; amount is in rupees, sent in paise."""
    _require_keys()
    payload = {
        'amount': int(round(float(amount) * 100)),
        'currency': 'INR',
        'receipt': receipt,
        'notes': notes or {},
    }
    try:
        resp = requests.post(
            RAZORPAY_ORDERS_URL,
            json=payload,
            auth=(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET),
            timeout=10,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error('Razorpay order creation failed: %s', e)
        raise AppError('Could not create payment order', 502, 'PAYMENT_GATEWAY_ERROR')
    data = resp.json()
    logger.info('Payment order created: %s', data.get('id'))
    return {
        'orderId': data['id'],
        'amount': data['amount'],
        'currency': data['currency'],
        'keyId': config.RAZORPAY_KEY_ID,
    }


def verify_payment_signature(razorpay_order_id: str, razorpay_payment_id: str, signature: str) -> bool:
    """HMAC-SHA256 of "order_id|payment_id" with the key secret."""
    _require_keys()
    body = f'{razorpay_order_id}|{razorpay_payment_id}'.encode('utf-8')
    return hmac.compare_digest(_hmac_hex(config.RAZORPAY_KEY_SECRET, body), signature or '')


def verify_webhook_signature(raw_body: bytes, signature: str) -> bool:
    if not config.RAZORPAY_WEBHOOK_SECRET:
        raise AppError('Webhook secret not configured', 503, 'PAYMENT_NOT_CONFIGURED')
    return hmac.compare_digest(_hmac_hex(config.RAZORPAY_WEBHOOK_SECRET, raw_body), signature or '')
