import io

import dbhelper


def test_public_settings_fall_back_to_defaults(client):
    data = client.get('/api/settings').get_json()['data']
    assert data['siteTitle'] == 'PJA Stick & 3D Studio'
    assert data['whatsappNumber'] == '916372362313'
    assert data['counters']['happyCustomers'] == 500


def test_update_settings_merges(client, admin_headers, fake_db):
    resp = client.put('/api/settings/admin', json={'heroTitle': 'Print anything', 'counters': {'projectsDone': 1500}},
                      headers=admin_headers)
    assert resp.status_code == 200
    data = client.get('/api/settings').get_json()['data']
    assert data['heroTitle'] == 'Print anything'
    assert data['siteTitle'] == 'PJA Stick & 3D Studio'
    assert fake_db.docs('settings')['siteSettings']['counters'] == {'projectsDone': 1500}


def test_update_settings_needs_body(client, admin_headers):
    assert client.put('/api/settings/admin', json={}, headers=admin_headers).status_code == 400


def test_admin_settings_require_admin(client, customer_headers):
    assert client.get('/api/settings/admin', headers=customer_headers).status_code == 403


def test_settings_image_upload(client, admin_headers, bucket):
    resp = client.post('/api/settings/admin/image/logo', headers=admin_headers, content_type='multipart/form-data',
                       data={'image': (io.BytesIO(b'\x89PNG fake'), 'logo.png', 'image/png')})
    assert resp.status_code == 200
    url = resp.get_json()['data']['logoUrl']
    assert url.startswith('https://storage.googleapis.com/pja-test.appspot.com/settings/')
    assert url.endswith('_logo.png')


def test_settings_image_unknown_field(client, admin_headers, bucket):
    resp = client.post('/api/settings/admin/image/banner', headers=admin_headers, content_type='multipart/form-data',
                       data={'image': (io.BytesIO(b'x'), 'b.png', 'image/png')})
    assert resp.status_code == 400


# DROPDOWNS
def test_dropdown_add_and_list(client, admin_headers):
    for value in ('Matte', 'Glossy', 'Matte'):
        resp = client.post('/api/dropdowns', json={'fieldName': 'finish', 'value': value}, headers=admin_headers)
        assert resp.status_code == 201
    assert client.get('/api/dropdowns?fieldName=finish').get_json()['data'] == {'finish': ['Matte', 'Glossy']}
    assert client.get('/api/dropdowns').get_json()['data'] == {'finish': ['Matte', 'Glossy']}
    assert client.get('/api/dropdowns?fieldName=size').get_json()['data'] == {'size': []}


def test_dropdown_remove(client, admin_headers):
    client.post('/api/dropdowns', json={'fieldName': 'finish', 'value': 'Matte'}, headers=admin_headers)
    resp = client.delete('/api/dropdowns', json={'fieldName': 'finish', 'value': 'Matte'}, headers=admin_headers)
    assert resp.status_code == 200
    assert client.get('/api/dropdowns?fieldName=finish').get_json()['data'] == {'finish': []}


def test_dropdown_remove_unknown_field(client, admin_headers):
    resp = client.delete('/api/dropdowns', json={'fieldName': 'nope', 'value': 'x'}, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.get_json()['error']['code'] == 'FIELD_NOT_FOUND'


def test_initialize_database_is_idempotent(fake_db):
    first = dbhelper.initialize_database()
    second = dbhelper.initialize_database()
    assert first['categories'] == len(dbhelper.DEFAULT_CATEGORIES)
    assert second == {'categories': 0, 'dropdowns': 0, 'settings': False, 'billing': False}
    assert fake_db.docs('dropdownOptions')['priceTier']['values'] == ['A', 'B', 'C', 'D']


def test_init_db_command(app, fake_db):
    result = app.test_cli_runner().invoke(args=['init-db'])
    assert result.exit_code == 0
    assert 'Database initialised' in result.output
    assert len(fake_db.docs('categories')) == len(dbhelper.DEFAULT_CATEGORIES)


def test_health(client):
    assert client.get('/health').get_json()['status'] == 'ok'


def test_unknown_route_uses_error_envelope(client):
    resp = client.get('/api/nothing-here')
    assert resp.status_code == 404
    assert resp.get_json()['error']['code'] == 'NOT_FOUND'


def test_returned_settings_do_not_share_defaults(fake_db):
    settings = dbhelper.get_settings()
    settings['counters']['happyCustomers'] = 0
    settings['socialLinks']['instagram'] = 'changed'
    fresh = dbhelper.get_settings()
    assert fresh['counters']['happyCustomers'] == 500
    assert fresh['socialLinks'] == dbhelper.DEFAULT_SETTINGS['socialLinks']
    assert fresh['socialLinks'].get('instagram') != 'changed'
