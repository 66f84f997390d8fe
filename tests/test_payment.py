import hashlib
import hmac
import json

import pytest

import config
import dbhelper
import paymenthelper


@pytest.fixture(autouse=True)
def razorpay_keys(monkeypatch):
    monkeypatch.setattr(config, 'RAZORPAY_KEY_ID', 'rzp_test_key')
    monkeypatch.setattr(config, 'RAZORPAY_KEY_SECRET', 'rzp_secret')
    monkeypatch.setattr(config, 'RAZORPAY_WEBHOOK_SECRET', 'hook_secret')


def _sign(secret, body):
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def order(make_product):
    product = make_product(price=300)
    return dbhelper.create_order([{'productId': product['id'], 'quantity': 2}],
                                 {'customerId': 'cust-1', 'customerName': 'Juan'})


def test_signature_check():
    signature = _sign('rzp_secret', b'order_1|pay_1')
    assert paymenthelper.verify_payment_signature('order_1', 'pay_1', signature) is True
    assert paymenthelper.verify_payment_signature('order_1', 'pay_2', signature) is False


def test_create_payment_order(client, customer_headers, order, monkeypatch, fake_db):
    sent = {}

    class Response:
        status_code = 200

        def raise_for_status(self):
            pass

        def json(self):
            return {'id': 'order_rzp_1', 'amount': sent['json']['amount'], 'currency': 'INR'}

    def fake_post(url, **kwargs):
        sent.update(kwargs, url=url)
        return Response()

    monkeypatch.setattr(paymenthelper.requests, 'post', fake_post)
    resp = client.post('/api/payment/create', json={'orderId': order['id']}, headers=customer_headers)
    assert resp.status_code == 200
    data = resp.get_json()['data']
    assert data == {'orderId': 'order_rzp_1', 'amount': 70800, 'currency': 'INR', 'keyId': 'rzp_test_key'}
    assert sent['json']['receipt'] == order['orderNumber']
    assert sent['auth'] == ('rzp_test_key', 'rzp_secret')
    assert fake_db.docs('orders')[order['id']]['payment']['razorpayOrderId'] == 'order_rzp_1'


def test_create_payment_for_someone_elses_order(client, other_customer_headers, order):
    resp = client.post('/api/payment/create', json={'orderId': order['id']}, headers=other_customer_headers)
    assert resp.status_code == 403


def test_verify_marks_order_paid(client, customer_headers, order, fake_db):
    payload = {
        'orderId': order['id'],
        'razorpay_order_id': 'order_rzp_1',
        'razorpay_payment_id': 'pay_9',
        'razorpay_signature': _sign('rzp_secret', b'order_rzp_1|pay_9'),
    }
    resp = client.post('/api/payment/verify', json=payload, headers=customer_headers)
    assert resp.status_code == 200
    stored = fake_db.docs('orders')[order['id']]
    assert stored['status'] == 'confirmed'
    assert stored['payment']['status'] == 'completed'
    assert stored['payment']['transactionId'] == 'pay_9'
    assert stored['timeline'][-1]['note'] == 'Payment successful'


def test_verify_rejects_bad_signature(client, customer_headers, order, fake_db):
    payload = {
        'orderId': order['id'],
        'razorpay_order_id': 'order_rzp_1',
        'razorpay_payment_id': 'pay_9',
        'razorpay_signature': 'deadbeef',
    }
    resp = client.post('/api/payment/verify', json=payload, headers=customer_headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'INVALID_SIGNATURE'
    assert fake_db.docs('orders')[order['id']]['status'] == 'pending'


def test_webhook_captured(client, order, fake_db):
    body = json.dumps({
        'event': 'payment.captured',
        'payload': {'payment': {'entity': {'id': 'pay_hook', 'notes': {'orderId': order['id']}}}},
    }).encode()
    resp = client.post('/api/payment/webhook', data=body, content_type='application/json',
                       headers={'X-Razorpay-Signature': _sign('hook_secret', body)})
    assert resp.status_code == 200
    assert fake_db.docs('orders')[order['id']]['payment']['transactionId'] == 'pay_hook'


def test_webhook_bad_signature(client):
    resp = client.post('/api/payment/webhook', data=b'{}', content_type='application/json',
                       headers={'X-Razorpay-Signature': 'nope'})
    assert resp.status_code == 400


def test_payments_not_configured(client, customer_headers, order, monkeypatch):
    monkeypatch.setattr(config, 'RAZORPAY_KEY_SECRET', None)
    resp = client.post('/api/payment/create', json={'orderId': order['id']}, headers=customer_headers)
    assert resp.status_code == 503
