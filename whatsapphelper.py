import re
import logging
from urllib.parse import quote

import requests

import config

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = 'https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json'


def create_whatsapp_link(message: str, number: str = None) -> str:
    """wa.me link with the message pre-filled."""
    number = re.sub(r'\D', '', number or config.SHOP_WHATSAPP_NUMBER)
    return f'https://wa.me/{number}?text={quote(message, safe="")}'


def validate_whatsapp_number(number: str) -> bool:
    cleaned = re.sub(r'\D', '', number or '')
    return 10 <= len(cleaned) <= 15


# MESSAGE FORMATTERS
def format_product_message(product: dict, quantity: int = 1) -> str:
    lines = [
        "Hi! I'd like to order:",
        '',
        f"*{product.get('name', '')}*",
        f'Quantity: {quantity}',
    ]
    if product.get('priceTier'):
        lines.append(f"Price Tier: {product['priceTier']}")
    if product.get('category'):
        lines.append(f"Category: {product['category']}")
    lines += ['', 'Please let me know the final price and delivery time. Thanks!']
    return '\n'.join(lines)


def format_checkout_message(order: dict) -> str:
    items = '\n'.join(
        f"{i}. {item.get('productName', '')} x{item.get('quantity', 0)}"
        for i, item in enumerate(order.get('items', []), start=1)
    )
    message = (
        "Hi, I'd like to place an order:\n\n"
        f"Order #{order.get('orderNumber', '')}\n\n"
        f"Items:\n{items}\n\n"
        f"Name: {order.get('customerName', '')}\n"
        f"Phone: {order.get('customerPhone', '')}\n"
        f"Email: {order.get('customerEmail', '')}\n\n"
    )
    if order.get('notes'):
        message += f"Special Requirements:\n{order['notes']}\n\n"
    return message + 'Please confirm my order. Thank you!'


def format_inquiry_message(subject: str, message: str) -> str:
    return (
        'Hi! I have an inquiry:\n\n'
        f'*Subject:* {subject}\n\n'
        f'*Message:*\n{message}\n\n'
        'Looking forward to your response. Thanks!'
    )


def format_order_notification(order: dict) -> str:
    items = '\n'.join(
        f"{i}. {item.get('productName', '')} x{item.get('quantity', 0)} ({item.get('priceTier') or '-'})"
        for i, item in enumerate(order.get('items', []), start=1)
    )
    created = order.get('createdAt')
    created_text = created.strftime('%Y-%m-%d %H:%M UTC') if hasattr(created, 'strftime') else str(created or '')
    message = (
        '*New Order Received*\n\n'
        f"*Order Number:* {order.get('orderNumber', '')}\n\n"
        '*Customer Details:*\n'
        f"Name: {order.get('customerName', '')}\n"
        f"Phone: {order.get('customerPhone', '')}\n"
        f"Email: {order.get('customerEmail', '')}\n\n"
        f'*Order Items:*\n{items}\n\n'
        f"*Total Items:* {order.get('totalItems', 0)}\n\n"
    )
    if order.get('notes'):
        message += f"*Special Notes:*\n{order['notes']}\n\n"
    return message + f'*Order Time:* {created_text}\n\nPlease contact the customer to confirm the order.'


# TWILIO
def twilio_configured() -> bool:
    return bool(config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_WHATSAPP_FROM)


def send_whatsapp_message(to: str, message: str) -> dict:
    """Send through the Twilio WhatsApp API; never raises."""
    if not twilio_configured():
        logger.warning('Twilio not configured - skipping WhatsApp message')
        return {'success': False, 'error': 'Twilio not configured'}

    url = TWILIO_MESSAGES_URL.format(sid=config.TWILIO_ACCOUNT_SID)
    to_number = to if to.startswith('+') else f'+{to}'
    try:
        resp = requests.post(
            url,
            data={
                'From': f'whatsapp:{config.TWILIO_WHATSAPP_FROM}',
                'To': f'whatsapp:{to_number}',
                'Body': message,
            },
            auth=(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN),
            timeout=5,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error('Failed to send WhatsApp message: %s', e)
        return {'success': False, 'error': str(e)}

    sid = resp.json().get('sid')
    logger.info('WhatsApp message sent successfully: %s', sid)
    return {'success': True, 'messageId': sid}


def send_order_notification(order: dict) -> dict:
    return send_whatsapp_message(config.SHOP_WHATSAPP_NUMBER, format_order_notification(order))
