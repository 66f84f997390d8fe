def test_duplicate_slug_is_rejected(client, admin_headers, fake_db):
    first = client.post('/api/categories', json={'name': 'Stickers', 'slug': 'stickers'}, headers=admin_headers)
    assert first.status_code == 201

    resp = client.post('/api/categories', json={'name': 'More Stickers', 'slug': 'stickers'}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'DUPLICATE_SLUG'
    assert [c['slug'] for c in fake_db.docs('categories').values()] == ['stickers']


def test_invalid_slug(client, admin_headers):
    resp = client.post('/api/categories', json={'name': 'Bad', 'slug': 'Bad Slug'}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'VALIDATION_ERROR'


def test_list_sorted_with_product_counts(client, admin_headers, make_product):
    client.post('/api/categories', json={'name': 'T-Shirts', 'slug': 't-shirts'}, headers=admin_headers)
    banners = client.post('/api/categories', json={'name': 'Banners', 'slug': 'banners'},
                          headers=admin_headers).get_json()['data']
    make_product(category='banners')
    make_product(category=banners['id'])
    make_product(category='Banners', isActive=False)

    categories = client.get('/api/categories').get_json()['data']
    assert [c['name'] for c in categories] == ['Banners', 'T-Shirts']
    assert [c['productCount'] for c in categories] == [2, 0]


def test_update_category_keeps_slug_unique(client, admin_headers):
    client.post('/api/categories', json={'name': 'Stickers', 'slug': 'stickers'}, headers=admin_headers)
    banners = client.post('/api/categories', json={'name': 'Banners', 'slug': 'banners'},
                          headers=admin_headers).get_json()['data']

    resp = client.put(f"/api/categories/{banners['id']}", json={'slug': 'stickers'}, headers=admin_headers)
    assert resp.status_code == 400
    resp = client.put(f"/api/categories/{banners['id']}", json={'slug': 'banners', 'description': 'Flex'},
                      headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()['data']['description'] == 'Flex'


def test_delete_category_with_products_is_refused(client, admin_headers, make_product, fake_db):
    category = client.post('/api/categories', json={'name': 'Stickers', 'slug': 'stickers'},
                           headers=admin_headers).get_json()['data']
    make_product(category='stickers', isActive=False)

    resp = client.delete(f"/api/categories/{category['id']}", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'CATEGORY_HAS_PRODUCTS'
    assert category['id'] in fake_db.docs('categories')


def test_delete_empty_category(client, admin_headers, fake_db):
    category = client.post('/api/categories', json={'name': 'Empty', 'slug': 'empty'},
                           headers=admin_headers).get_json()['data']
    assert client.delete(f"/api/categories/{category['id']}", headers=admin_headers).status_code == 200
    assert fake_db.docs('categories') == {}
    assert client.delete(f"/api/categories/{category['id']}", headers=admin_headers).status_code == 404


def test_category_writes_need_admin(client, customer_headers):
    resp = client.post('/api/categories', json={'name': 'X', 'slug': 'x'}, headers=customer_headers)
    assert resp.status_code == 403
