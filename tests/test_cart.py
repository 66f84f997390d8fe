def test_empty_cart(client, customer_headers):
    data = client.get('/api/cart', headers=customer_headers).get_json()['data']
    assert data == {'items': [], 'total': 0, 'itemCount': 0}


def test_add_merges_quantities(client, customer_headers, make_product):
    product = make_product(price=40)
    client.post('/api/cart/add', json={'productId': product['id'], 'quantity': 2}, headers=customer_headers)
    client.post('/api/cart/add', json={'productId': product['id']}, headers=customer_headers)

    data = client.get('/api/cart', headers=customer_headers).get_json()['data']
    assert data['itemCount'] == 1
    assert data['items'][0]['quantity'] == 3
    assert data['items'][0]['subtotal'] == 120.0
    assert data['items'][0]['product']['name'] == 'Vinyl Sticker'
    assert data['total'] == 120.0


def test_add_unknown_product(client, customer_headers):
    resp = client.post('/api/cart/add', json={'productId': 'ghost'}, headers=customer_headers)
    assert resp.status_code == 404


def test_update_and_remove(client, customer_headers, make_product):
    a = make_product(name='A', price=10)
    b = make_product(name='B', price=5)
    for product in (a, b):
        client.post('/api/cart/add', json={'productId': product['id']}, headers=customer_headers)

    assert client.put(f"/api/cart/update/{a['id']}", json={'quantity': 4}, headers=customer_headers).status_code == 200
    assert client.put(f"/api/cart/update/{a['id']}", json={'quantity': 0}, headers=customer_headers).status_code == 400
    assert client.put('/api/cart/update/ghost', json={'quantity': 1}, headers=customer_headers).status_code == 404
    assert client.delete(f"/api/cart/remove/{b['id']}", headers=customer_headers).status_code == 200

    data = client.get('/api/cart', headers=customer_headers).get_json()['data']
    assert [(i['productId'], i['quantity']) for i in data['items']] == [(a['id'], 4)]
    assert data['total'] == 40.0


def test_cart_drops_deleted_products(client, customer_headers, make_product, fake_db):
    product = make_product()
    client.post('/api/cart/add', json={'productId': product['id']}, headers=customer_headers)
    del fake_db.docs('products')[product['id']]
    assert client.get('/api/cart', headers=customer_headers).get_json()['data']['items'] == []


def test_clear(client, customer_headers, make_product):
    product = make_product()
    client.post('/api/cart/add', json={'productId': product['id']}, headers=customer_headers)
    assert client.delete('/api/cart/clear', headers=customer_headers).status_code == 200
    assert client.get('/api/cart', headers=customer_headers).get_json()['data']['itemCount'] == 0


def test_cart_requires_login(client):
    assert client.get('/api/cart').status_code == 401
