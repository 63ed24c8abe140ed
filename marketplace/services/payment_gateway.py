from flask import current_app
from urllib.parse import urlencode
import hmac
import uuid

WEBHOOK_SUCCESS = 'SUCCESS'


def new_payment_reference(prefix):
    return f'{prefix}-{uuid.uuid4().hex[:20].upper()}'


def build_redirect(reference, amount):
    base = current_app.config['PAYMENT_GATEWAY_URL']
    query = urlencode({'reference': reference, 'amount': str(amount)})
    return {
        'url': f'{base}?{query}',
        'reference': reference,
        'amount': str(amount),
    }


def verify_webhook_secret(provided):
    expected = current_app.config.get('PAYMENT_WEBHOOK_SECRET') or ''
    if not expected or not provided:
        return False
    return hmac.compare_digest(str(provided), expected)
