import dbhelper


def _order(product, quantity):
    return dbhelper.create_order([{'productId': product['id'], 'quantity': quantity}],
                                 {'customerName': 'Walk-in', 'customerEmail': 'walkin@gmail.com'})


def test_dashboard_counts(client, admin_headers, make_product):
    sticker = make_product(price=100)
    make_product(name='Old banner', isActive=False)
    done = _order(sticker, 6)
    _order(sticker, 1)
    dbhelper.update_order_status(done['id'], 'completed')

    data = client.get('/api/admin/dashboard', headers=admin_headers).get_json()['data']
    assert data['stats'] == {
        'totalProducts': 1,
        'totalOrders': 2,
        'totalUsers': 1,
        'pendingOrders': 1,
        'totalRevenue': 708.0,
    }
    assert len(data['recentOrders']) == 2


def test_dashboard_requires_admin(client, customer_headers):
    assert client.get('/api/admin/dashboard', headers=customer_headers).status_code == 403


def test_analytics_top_products(client, admin_headers, make_product):
    sticker = make_product(name='Sticker', price=10)
    mug = make_product(name='Mug', price=200)
    _order(sticker, 3)
    _order(mug, 1)

    data = client.get('/api/admin/analytics?period=7d', headers=admin_headers).get_json()['data']
    assert data['period'] == '7d'
    assert data['totalOrders'] == 2
    # 30 + 18% + 50 shipping, then 200 + 18% + 50 shipping
    assert data['totalRevenue'] == 371.4
    assert data['averageOrderValue'] == 185.7
    assert data['topProducts'][sticker['id']] == {'name': 'Sticker', 'count': 3, 'revenue': 30.0}


def test_analytics_bad_period_defaults_to_30_days(client, admin_headers):
    data = client.get('/api/admin/analytics?period=forever', headers=admin_headers).get_json()['data']
    assert data['period'] == '30d'
    assert data['averageOrderValue'] == 0
