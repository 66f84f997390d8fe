import copy
import os
import uuid

os.environ['ENVIRONMENT'] = 'test'
os.environ['JWT_SECRET'] = 'test-secret'
os.environ.pop('TWILIO_ACCOUNT_SID', None)
os.environ.pop('FIREBASE_API_KEY', None)

import pytest
from google.api_core.exceptions import NotFound
from google.cloud.firestore_v1.transforms import ArrayRemove, ArrayUnion, Increment

import authhelper
import dbhelper
from app import app as flask_app


# ==================================================
# IN-MEMORY FIRESTORE
# ==================================================
def _apply_value(current, value):
    if isinstance(value, Increment):
        return (current or 0) + value.value
    if isinstance(value, ArrayUnion):
        merged = list(current or [])
        merged.extend(v for v in value.values if v not in merged)
        return merged
    if isinstance(value, ArrayRemove):
        return [v for v in (current or []) if v not in value.values]
    return copy.deepcopy(value)


def _set_path(data, path, value):
    parts = path.split('.')
    target = data
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = _apply_value(target.get(parts[-1]), value)


def _merge(target, updates):
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = _apply_value(target.get(key), value)


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeDocumentRef:
    def __init__(self, store, collection, doc_id):
        self._store = store
        self._collection = collection
        self.id = doc_id

    @property
    def _docs(self):
        return self._store.setdefault(self._collection, {})

    def get(self):
        return FakeSnapshot(self, self._docs.get(self.id))

    def set(self, data, merge=False):
        if merge and self.id in self._docs:
            _merge(self._docs[self.id], data)
        else:
            fresh = {}
            _merge(fresh, data)
            self._docs[self.id] = fresh

    def update(self, data):
        if self.id not in self._docs:
            raise NotFound(f'No document to update: {self._collection}/{self.id}')
        for path, value in data.items():
            _set_path(self._docs[self.id], path, value)

    def delete(self):
        self._docs.pop(self.id, None)


OPS = {
    '==': lambda a, b: a == b,
    '!=': lambda a, b: a != b,
    '<': lambda a, b: a is not None and a < b,
    '<=': lambda a, b: a is not None and a <= b,
    '>': lambda a, b: a is not None and a > b,
    '>=': lambda a, b: a is not None and a >= b,
    'in': lambda a, b: a in b,
    'array_contains': lambda a, b: b in (a or []),
}


class FakeQuery:
    def __init__(self, store, collection, filters=None, limit=None):
        self._store = store
        self._collection = collection
        self._filters = filters or []
        self._limit = limit

    def where(self, field, op, value):
        return FakeQuery(self._store, self._collection, self._filters + [(field, op, value)], self._limit)

    def limit(self, count):
        return FakeQuery(self._store, self._collection, self._filters, count)

    def get(self):
        results = []
        for doc_id, data in list(self._store.get(self._collection, {}).items()):
            if all(OPS[op](data.get(field), value) for field, op, value in self._filters):
                results.append(FakeSnapshot(FakeDocumentRef(self._store, self._collection, doc_id), data))
        return results[:self._limit] if self._limit is not None else results

    def stream(self):
        return iter(self.get())


class FakeCollection(FakeQuery):
    def document(self, doc_id=None):
        return FakeDocumentRef(self._store, self._collection, doc_id or uuid.uuid4().hex[:20])

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return None, ref


class FakeBatch:
    def __init__(self):
        self._ops = []

    def set(self, ref, data, merge=False):
        self._ops.append(lambda: ref.set(data, merge=merge))

    def update(self, ref, data):
        self._ops.append(lambda: ref.update(data))

    def delete(self, ref):
        self._ops.append(ref.delete)

    def commit(self):
        for op in self._ops:
            op()
        self._ops = []


class FakeFirestore:
    def __init__(self):
        self.store = {}

    def collection(self, name):
        return FakeCollection(self.store, name)

    def batch(self):
        return FakeBatch()

    def docs(self, name):
        """Raw {id: data} of a collection, for assertions."""
        return self.store.get(name, {})


# ==================================================
# FAKE CLOUD STORAGE
# ==================================================
class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name

    @property
    def public_url(self):
        return f'https://storage.googleapis.com/{self.bucket.name}/{self.name}'

    def upload_from_string(self, data, content_type=None):
        self.bucket.objects[self.name] = (data, content_type)

    def make_public(self):
        self.bucket.public.add(self.name)

    def exists(self):
        return self.name in self.bucket.objects

    def delete(self):
        self.bucket.objects.pop(self.name)

    def generate_signed_url(self, **kwargs):
        self.bucket.signed.append((self.name, kwargs))
        return f'https://signed.example/{self.name}'


class FakeBucket:
    name = 'pja-test.appspot.com'

    def __init__(self):
        self.objects = {}
        self.public = set()
        self.signed = []

    def blob(self, name):
        return FakeBlob(self, name)


# ==================================================
# FIXTURES
# ==================================================
@pytest.fixture(autouse=True)
def fake_db(monkeypatch):
    fake = FakeFirestore()
    monkeypatch.setattr(dbhelper, 'db', fake)
    return fake


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True)
    yield flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def bucket(monkeypatch):
    import storagehelper
    fake = FakeBucket()
    monkeypatch.setattr(storagehelper, 'get_bucket', lambda: fake)
    return fake


def _headers(uid, email, role, name):
    return {'Authorization': f'Bearer {authhelper.issue_token(uid, email, role, name)}'}


@pytest.fixture
def customer_headers(fake_db):
    dbhelper.create_user_profile('cust-1', 'juan@gmail.com', 'Juan', '9876543210', 'customer')
    return _headers('cust-1', 'juan@gmail.com', 'customer', 'Juan')


@pytest.fixture
def other_customer_headers(fake_db):
    dbhelper.create_user_profile('cust-2', 'maria@gmail.com', 'Maria', '9123456780', 'customer')
    return _headers('cust-2', 'maria@gmail.com', 'customer', 'Maria')


@pytest.fixture
def admin_headers(fake_db):
    dbhelper.create_user_profile('admin-1', 'admin@gmail.com', 'Admin', None, 'admin')
    return _headers('admin-1', 'admin@gmail.com', 'admin', 'Admin')


@pytest.fixture
def super_admin_headers(fake_db):
    dbhelper.create_user_profile('super-1', 'owner@gmail.com', 'Owner', None, 'super_admin')
    return _headers('super-1', 'owner@gmail.com', 'super_admin', 'Owner')


@pytest.fixture
def make_product(fake_db):
    def _make(**overrides):
        data = {'name': 'Vinyl Sticker', 'category': 'stickers', 'price': 100.0, 'priceTier': 'A', 'stockQty': 10}
        data.update(overrides)
        return dbhelper.create_product(data)
    return _make
