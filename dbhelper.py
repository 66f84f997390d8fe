import os
import copy
import random
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

# FIREBASE ADMIN SDK
import firebase_admin
from firebase_admin import credentials, firestore

import config
from errors import AppError

logger = logging.getLogger(__name__)

# PLACEHOLDER FIRESTORE CLIENT (LAZY INITIALIZATION)
db = None

# GST 18%, FLAT SHIPPING WAIVED ABOVE THE THRESHOLD
TAX_RATE = 0.18
SHIPPING_FEE = 50.0
FREE_SHIPPING_THRESHOLD = 500.0

ADMIN_ROLES = ('admin', 'super_admin')
CANCELLABLE_STATUSES = ('pending', 'confirmed')

'''
Credentials are looked up in this order:
    === FIREBASE_CREDENTIALS env var
    === GOOGLE_APPLICATION_CREDENTIALS env var
    === serviceAccountKey.json in the project root
    === application default credentials (Cloud Run sets K_SERVICE) or the emulator
'''
def init_firebase():
    """Initialise the default Firebase Admin app once."""
    if firebase_admin._apps:
        return
    options = {}
    if config.FIREBASE_PROJECT_ID:
        options['projectId'] = config.FIREBASE_PROJECT_ID
    if config.FIREBASE_STORAGE_BUCKET:
        options['storageBucket'] = config.FIREBASE_STORAGE_BUCKET
    elif config.FIREBASE_PROJECT_ID:
        options['storageBucket'] = f'{config.FIREBASE_PROJECT_ID}.appspot.com'

    cred_path = config.FIREBASE_CREDENTIALS
    try:
        if os.path.exists(cred_path):
            firebase_admin.initialize_app(credentials.Certificate(cred_path), options)
            logger.info('Firebase initialised from service account file')
        elif os.getenv('K_SERVICE') or os.getenv('FIRESTORE_EMULATOR_HOST'):
            firebase_admin.initialize_app(options=options)
            logger.info('Firebase initialised with application default credentials')
        else:
            raise RuntimeError(
                "Firebase credentials not found. Set FIREBASE_CREDENTIALS or GOOGLE_APPLICATION_CREDENTIALS to your serviceAccountKey.json, or place serviceAccountKey.json in project root."
            )
    except ValueError as e:
        # already initialised elsewhere, reuse it
        if 'already exists' not in str(e).lower():
            raise


def _require_db():
    global db
    if db is not None:
        return
    init_firebase()
    db = firestore.client()


# HELPER FUNCTIONS
def _now() -> datetime:
    """Current UTC timestamp (Firestore stores datetimes natively)."""
    return datetime.now(timezone.utc)


def _doc_to_dict(doc) -> Dict[str, Any]:
    data = doc.to_dict() or {}
    data['id'] = doc.id
    return data


def _actor(user: Optional[dict]) -> str:
    if not user:
        return 'anonymous'
    return user.get('email') or user.get('uid') or 'unknown'


def _get_existing(collection: str, doc_id: str, message: str, code: str):
    """Return (ref, snapshot) or raise a 404 AppError."""
    _require_db()
    ref = db.collection(collection).document(doc_id)
    snapshot = ref.get()
    if not snapshot.exists:
        raise AppError(message, 404, code)
    return ref, snapshot


def _sort_docs(docs: List[dict], field: str, descending: bool) -> List[dict]:
    """Sort in memory; documents missing the field go last."""
    present = [d for d in docs if d.get(field) is not None]
    missing = [d for d in docs if d.get(field) is None]
    present.sort(key=lambda d: d[field], reverse=descending)
    return present + missing


def _paginate(docs: List[dict], page: int, limit: int) -> Tuple[List[dict], dict]:
    page = max(int(page), 1)
    limit = max(int(limit), 1)
    start = (page - 1) * limit
    total = len(docs)
    return docs[start:start + limit], {
        'page': page,
        'limit': limit,
        'total': total,
        'pages': (total + limit - 1) // limit,
    }


def _empty_stats() -> dict:
    return {'viewCount': 0, 'salesCount': 0, 'reviewCount': 0, 'averageRating': 0}


# ==================================================
# PRICING
# - unit_price(): selling price of a product
# - calculate_order_pricing(): subtotal / tax / shipping / total
# - generate_order_number(): PJA-YYYYMMDD-NNN
# ==================================================
def unit_price(product: dict) -> float:
    """Selling price: price, then discountedPrice, actualPrice, basePrice."""
    for key in ('price', 'discountedPrice', 'actualPrice', 'basePrice'):
        value = product.get(key)
        if value is not None and value != '':
            return float(value)
    return 0.0


def calculate_order_pricing(items: List[dict]) -> dict:
    """Price a list of {price, quantity} lines with the server's tax/shipping rules."""
    subtotal = round(sum(float(item['price']) * int(item['quantity']) for item in items), 2)
    tax = round(subtotal * TAX_RATE, 2)
    shipping = 0.0 if subtotal > FREE_SHIPPING_THRESHOLD else SHIPPING_FEE
    return {
        'subtotal': subtotal,
        'tax': tax,
        'shipping': shipping,
        'discount': 0.0,
        'total': round(subtotal + tax + shipping, 2),
    }


def generate_order_number() -> str:
    # timestamp + random, not guaranteed unique
    return f"PJA-{_now().strftime('%Y%m%d')}-{random.randint(0, 999):03d}"


# ==================================================
# PRODUCTS COLLECTION
# - list_products(): public catalog with filters + pagination
# - search_products(): substring search (no full text index in Firestore)
# - get_products_by_category()
# - get_product(): fetch single product, bumps viewCount
# - create_product() / update_product() / archive_product() / bulk_create_products()
# ==================================================
PRODUCT_SORT_FIELDS = ('createdAt', 'updatedAt', 'price', 'name')


def _category_keys(value: str) -> set:
    """All identifiers (id, name, slug) a product may use to reference a category."""
    _require_db()
    keys = {value}
    for doc in db.collection('categories').get():
        data = doc.to_dict() or {}
        candidates = {doc.id, data.get('name'), data.get('slug')}
        if value in candidates:
            keys.update(k for k in candidates if k)
    return keys


def list_products(category: str = None, search: str = None, min_price: float = None,
                  max_price: float = None, featured: bool = None, active: str = 'true',
                  sort: str = 'createdAt', order: str = 'desc', page: int = 1, limit: int = 12):
    """Return (products, pagination) for the public catalog."""
    _require_db()
    if sort not in PRODUCT_SORT_FIELDS:
        raise AppError(f'Cannot sort by {sort}', 400, 'INVALID_SORT')

    query = db.collection('products')
    if active == 'true':
        query = query.where('isActive', '==', True)
    elif active == 'false':
        query = query.where('isActive', '==', False)
    products = [_doc_to_dict(doc) for doc in query.get()]

    if category and category != 'All':
        keys = _category_keys(category)
        products = [p for p in products if p.get('category') in keys]
    if min_price is not None:
        products = [p for p in products if unit_price(p) >= min_price]
    if max_price is not None:
        products = [p for p in products if unit_price(p) <= max_price]
    if featured is not None:
        products = [p for p in products if bool(p.get('isFeatured')) == featured]
    if search:
        term = search.lower()
        products = [
            p for p in products
            if term in str(p.get('name', '')).lower() or term in str(p.get('description', '')).lower()
        ]

    if sort == 'price':
        # same effective price the min/max filters use
        products.sort(key=unit_price, reverse=order != 'asc')
    else:
        products = _sort_docs(products, sort, order != 'asc')
    return _paginate(products, page, limit)


def search_products(q: str) -> list:
    """Case-insensitive search over name, description, category and tags of active products."""
    _require_db()
    if not q or len(q.strip()) < 2:
        raise AppError('Search query too short', 400, 'INVALID_QUERY')
    term = q.strip().lower()
    results = []
    for doc in db.collection('products').where('isActive', '==', True).get():
        data = _doc_to_dict(doc)
        text = ' '.join([
            str(data.get('name', '')),
            str(data.get('description', '')),
            str(data.get('category', '')),
            ' '.join(data.get('tags') or []),
        ]).lower()
        if term in text:
            results.append(data)
    return _sort_docs(results, 'name', False)


def get_products_by_category(category: str) -> list:
    _require_db()
    keys = _category_keys(category)
    docs = db.collection('products').where('isActive', '==', True).get()
    products = [_doc_to_dict(doc) for doc in docs]
    return _sort_docs([p for p in products if p.get('category') in keys], 'createdAt', True)


def get_product(product_id: str, count_view: bool = True) -> dict:
    """Fetch a product by id (archived ones included) and count the view."""
    ref, snapshot = _get_existing('products', product_id, 'Product not found', 'PRODUCT_NOT_FOUND')
    product = _doc_to_dict(snapshot)
    if count_view:
        ref.update({'stats.viewCount': firestore.Increment(1)})
        stats = dict(product.get('stats') or _empty_stats())
        stats['viewCount'] = int(stats.get('viewCount', 0)) + 1
        product['stats'] = stats
    return product


def _new_product_doc(data: dict, user: Optional[dict]) -> dict:
    now = _now()
    doc = dict(data)
    doc.setdefault('isActive', True)
    doc.setdefault('isFeatured', False)
    doc['stats'] = _empty_stats()
    doc['createdAt'] = now
    doc['updatedAt'] = now
    doc['createdBy'] = user.get('uid') if user else None
    return doc


def create_product(data: dict, user: Optional[dict] = None) -> dict:
    """Create a product; isActive defaults to True when omitted."""
    _require_db()
    doc = _new_product_doc(data, user)
    _, ref = db.collection('products').add(doc)
    logger.info('Product created: %s by %s', ref.id, _actor(user))
    doc['id'] = ref.id
    return doc


def update_product(product_id: str, updates: dict, user: Optional[dict] = None) -> dict:
    ref, _ = _get_existing('products', product_id, 'Product not found', 'PRODUCT_NOT_FOUND')
    updates = {k: v for k, v in updates.items() if k not in ('id', 'stats', 'createdAt', 'createdBy')}
    updates['updatedAt'] = _now()
    ref.update(updates)
    logger.info('Product updated: %s by %s', product_id, _actor(user))
    return _doc_to_dict(ref.get())


def archive_product(product_id: str, user: Optional[dict] = None) -> bool:
    """Soft delete: the document stays readable by id."""
    ref, _ = _get_existing('products', product_id, 'Product not found', 'PRODUCT_NOT_FOUND')
    ref.update({'isActive': False, 'updatedAt': _now()})
    logger.info('Product archived: %s by %s', product_id, _actor(user))
    return True


def bulk_create_products(products: List[dict], user: Optional[dict] = None) -> List[str]:
    _require_db()
    batch = db.batch()
    ids = []
    for data in products:
        ref = db.collection('products').document()
        batch.set(ref, _new_product_doc(data, user))
        ids.append(ref.id)
    batch.commit()
    logger.info('Bulk upload: %d products by %s', len(ids), _actor(user))
    return ids


# ==================================================
# CATEGORIES COLLECTION
# - list_categories(): sorted by name with productCount
# - create_category(): slug must be unique (read-then-write, no transaction)
# - update_category() / delete_category()
# ==================================================
def _slug_owner(slug: str) -> Optional[str]:
    """Id of the category using this slug, if any."""
    docs = db.collection('categories').where('slug', '==', slug).limit(1).get()
    return docs[0].id if docs else None


def list_categories() -> list:
    _require_db()
    active = [doc.to_dict() for doc in db.collection('products').where('isActive', '==', True).get()]
    categories = []
    for doc in db.collection('categories').get():
        category = _doc_to_dict(doc)
        keys = {doc.id, category.get('name'), category.get('slug')}
        category['productCount'] = len([p for p in active if p.get('category') in keys])
        categories.append(category)
    categories.sort(key=lambda c: str(c.get('name', '')).lower())
    return categories


def create_category(data: dict, user: Optional[dict] = None) -> dict:
    _require_db()
    if _slug_owner(data['slug']):
        raise AppError('Category slug already exists', 400, 'DUPLICATE_SLUG')
    now = _now()
    category = {
        'name': data['name'],
        'slug': data['slug'],
        'description': data.get('description') or '',
        'icon': data.get('icon') or '',
        'createdAt': now,
        'updatedAt': now,
    }
    _, ref = db.collection('categories').add(category)
    logger.info('Category created: %s by %s', data['name'], _actor(user))
    category['id'] = ref.id
    return category


def update_category(category_id: str, updates: dict, user: Optional[dict] = None) -> dict:
    ref, _ = _get_existing('categories', category_id, 'Category not found', 'CATEGORY_NOT_FOUND')
    if updates.get('slug'):
        owner = _slug_owner(updates['slug'])
        if owner and owner != category_id:
            raise AppError('Category slug already exists', 400, 'DUPLICATE_SLUG')
    updates = dict(updates)
    updates['updatedAt'] = _now()
    ref.update(updates)
    logger.info('Category updated: %s by %s', category_id, _actor(user))
    return _doc_to_dict(ref.get())


def delete_category(category_id: str, user: Optional[dict] = None) -> bool:
    """Hard delete, refused while any product still references the category."""
    ref, snapshot = _get_existing('categories', category_id, 'Category not found', 'CATEGORY_NOT_FOUND')
    data = snapshot.to_dict() or {}
    keys = {category_id, data.get('name'), data.get('slug')}
    for doc in db.collection('products').get():
        if (doc.to_dict() or {}).get('category') in keys:
            raise AppError(
                'Cannot delete category with existing products. Please reassign products first.',
                400, 'CATEGORY_HAS_PRODUCTS'
            )
    ref.delete()
    logger.info('Category deleted: %s by %s', category_id, _actor(user))
    return True


# ==================================================
# CART COLLECTION (one document per uid)
# - get_cart(): items joined with live product data
# - add_to_cart(): merge by productId
# - update_cart_item() / remove_from_cart() / clear_cart()
# ==================================================
def get_cart(uid: str) -> dict:
    _require_db()
    snapshot = db.collection('cart').document(uid).get()
    if not snapshot.exists:
        return {'items': [], 'total': 0, 'itemCount': 0}

    items = []
    for item in (snapshot.to_dict() or {}).get('items', []):
        product_doc = db.collection('products').document(item['productId']).get()
        if not product_doc.exists:
            continue
        product = product_doc.to_dict() or {}
        price = unit_price(product)
        items.append({
            **item,
            'product': {
                'id': product_doc.id,
                'name': product.get('name'),
                'price': price,
                'images': product.get('images', []),
                'imageUrl': product.get('imageUrl'),
                'stockQty': product.get('stockQty', 0),
            },
            'subtotal': round(price * int(item['quantity']), 2),
        })
    total = round(sum(item['subtotal'] for item in items), 2)
    return {'items': items, 'total': total, 'itemCount': len(items)}


def add_to_cart(uid: str, product_id: str, quantity: int = 1) -> dict:
    _get_existing('products', product_id, 'Product not found', 'PRODUCT_NOT_FOUND')
    cart_ref = db.collection('cart').document(uid)
    snapshot = cart_ref.get()
    now = _now()
    if not snapshot.exists:
        items = [{'productId': product_id, 'quantity': quantity, 'addedAt': now}]
        cart_ref.set({'userId': uid, 'items': items, 'updatedAt': now})
        return {'items': items}

    items = (snapshot.to_dict() or {}).get('items', [])
    for item in items:
        if item['productId'] == product_id:
            item['quantity'] = int(item['quantity']) + quantity
            break
    else:
        items.append({'productId': product_id, 'quantity': quantity, 'addedAt': now})
    cart_ref.update({'items': items, 'updatedAt': now})
    return {'items': items}


def _get_cart_items(uid: str):
    cart_ref, snapshot = _get_existing('cart', uid, 'Cart not found', 'CART_NOT_FOUND')
    return cart_ref, (snapshot.to_dict() or {}).get('items', [])


def update_cart_item(uid: str, product_id: str, quantity: int) -> bool:
    if quantity < 1:
        raise AppError('Quantity must be at least 1', 400, 'INVALID_QUANTITY')
    cart_ref, items = _get_cart_items(uid)
    for item in items:
        if item['productId'] == product_id:
            item['quantity'] = quantity
            break
    else:
        raise AppError('Item not found in cart', 404, 'ITEM_NOT_FOUND')
    cart_ref.update({'items': items, 'updatedAt': _now()})
    return True


def remove_from_cart(uid: str, product_id: str) -> bool:
    cart_ref, items = _get_cart_items(uid)
    cart_ref.update({'items': [i for i in items if i['productId'] != product_id], 'updatedAt': _now()})
    return True


def clear_cart(uid: str) -> bool:
    _require_db()
    db.collection('cart').document(uid).delete()
    return True


# ==================================================
# ORDERS COLLECTION
# - create_order(): snapshot items, price, append first timeline entry
# - list_user_orders() / get_order_for_user() / cancel_order() / track_order()
# - list_orders() / update_order_status(): admin
# - set_payment_reference() / mark_order_paid(): razorpay flow
# ==================================================
def _timeline_entry(status: str, note: str) -> dict:
    return {'status': status, 'timestamp': _now(), 'note': note}


def create_order(items: List[dict], customer: dict, shipping_address=None,
                 payment_method: str = 'whatsapp', notes: str = '') -> dict:
    """Create an order from [{productId, quantity}] with server-side pricing."""
    _require_db()
    if not items:
        raise AppError('Cart is empty', 400, 'EMPTY_CART')

    order_items = []
    for item in items:
        product_doc = db.collection('products').document(item['productId']).get()
        if not product_doc.exists:
            raise AppError(f"Product {item['productId']} not found", 404, 'PRODUCT_NOT_FOUND')
        product = product_doc.to_dict() or {}
        if product.get('isActive') is False:
            raise AppError(f"Product {product.get('name', item['productId'])} is no longer available", 400, 'PRODUCT_UNAVAILABLE')
        price = unit_price(product)
        quantity = int(item['quantity'])
        order_items.append({
            'productId': item['productId'],
            'productName': product.get('name', ''),
            'priceTier': product.get('priceTier'),
            'quantity': quantity,
            'price': price,
            'subtotal': round(price * quantity, 2),
        })

    now = _now()
    order = {
        'orderNumber': generate_order_number(),
        'customerId': customer.get('customerId'),
        'customerName': customer.get('customerName') or '',
        'customerEmail': customer.get('customerEmail') or '',
        'customerPhone': customer.get('customerPhone') or '',
        'items': order_items,
        'totalItems': sum(i['quantity'] for i in order_items),
        'pricing': calculate_order_pricing(order_items),
        'shippingAddress': shipping_address,
        'payment': {
            'method': payment_method,
            'status': 'pending',
            'transactionId': None,
            'paidAt': None,
        },
        'status': 'pending',
        'timeline': [_timeline_entry('pending', 'Order created')],
        'notes': notes or '',
        'adminNotes': '',
        'estimatedDelivery': now + timedelta(days=7),
        'createdAt': now,
        'updatedAt': now,
    }
    _, ref = db.collection('orders').add(order)
    logger.info('Order created: %s (%s) by %s', order['orderNumber'], ref.id, order['customerEmail'] or 'guest')
    order['id'] = ref.id
    return order


def list_user_orders(uid: str) -> list:
    _require_db()
    docs = db.collection('orders').where('customerId', '==', uid).get()
    return _sort_docs([_doc_to_dict(d) for d in docs], 'createdAt', True)


def get_order(order_id: str) -> dict:
    _, snapshot = _get_existing('orders', order_id, 'Order not found', 'ORDER_NOT_FOUND')
    return _doc_to_dict(snapshot)


def get_order_for_user(order_id: str, user: dict) -> dict:
    """Owner or admin only."""
    order = get_order(order_id)
    if order.get('customerId') != user.get('uid') and user.get('role') not in ADMIN_ROLES:
        raise AppError('Unauthorized', 403, 'FORBIDDEN')
    return order


def cancel_order(order_id: str, user: dict) -> dict:
    ref, snapshot = _get_existing('orders', order_id, 'Order not found', 'ORDER_NOT_FOUND')
    order = snapshot.to_dict() or {}
    if order.get('customerId') != user.get('uid'):
        raise AppError('Unauthorized', 403, 'FORBIDDEN')
    if order.get('status') not in CANCELLABLE_STATUSES:
        raise AppError('Order cannot be cancelled', 400, 'CANNOT_CANCEL')
    timeline = list(order.get('timeline') or [])
    timeline.append(_timeline_entry('cancelled', 'Cancelled by customer'))
    ref.update({'status': 'cancelled', 'timeline': timeline, 'updatedAt': _now()})
    logger.info('Order cancelled: %s', order.get('orderNumber'))
    return _doc_to_dict(ref.get())


def track_order(order_ref: str) -> dict:
    """Public tracking by document id or order number."""
    _require_db()
    snapshot = db.collection('orders').document(order_ref).get()
    if snapshot.exists:
        order = snapshot.to_dict() or {}
    else:
        docs = db.collection('orders').where('orderNumber', '==', order_ref).limit(1).get()
        if not docs:
            raise AppError('Order not found', 404, 'ORDER_NOT_FOUND')
        order = docs[0].to_dict() or {}
    return {
        'orderNumber': order.get('orderNumber'),
        'status': order.get('status'),
        'timeline': order.get('timeline', []),
        'estimatedDelivery': order.get('estimatedDelivery'),
    }


def list_orders(status: str = None, page: int = 1, limit: int = 20):
    """Admin order list, newest first."""
    _require_db()
    query = db.collection('orders')
    if status:
        query = query.where('status', '==', status)
    orders = _sort_docs([_doc_to_dict(d) for d in query.get()], 'createdAt', True)
    return _paginate(orders, page, limit)


def update_order_status(order_id: str, status: str, note: str = None, user: Optional[dict] = None) -> dict:
    ref, snapshot = _get_existing('orders', order_id, 'Order not found', 'ORDER_NOT_FOUND')
    order = snapshot.to_dict() or {}
    previous = order.get('status')
    timeline = list(order.get('timeline') or [])
    completed_before = previous == 'completed' or any(t.get('status') == 'completed' for t in timeline)
    timeline.append(_timeline_entry(status, note or f'Status updated to {status}'))
    ref.update({'status': status, 'timeline': timeline, 'updatedAt': _now()})

    # salesCount only grows the first time an order completes
    if status == 'completed' and not completed_before:
        for item in order.get('items', []):
            product_ref = db.collection('products').document(item['productId'])
            if product_ref.get().exists:
                product_ref.update({'stats.salesCount': firestore.Increment(int(item.get('quantity', 0)))})

    logger.info('Order %s status %s -> %s by %s', order_id, previous, status, _actor(user))
    return _doc_to_dict(ref.get())


def set_payment_reference(order_id: str, razorpay_order_id: str) -> bool:
    ref, _ = _get_existing('orders', order_id, 'Order not found', 'ORDER_NOT_FOUND')
    ref.update({'payment.razorpayOrderId': razorpay_order_id, 'updatedAt': _now()})
    return True


def mark_order_paid(order_id: str, transaction_id: str) -> dict:
    ref, snapshot = _get_existing('orders', order_id, 'Order not found', 'ORDER_NOT_FOUND')
    order = snapshot.to_dict() or {}
    now = _now()
    timeline = list(order.get('timeline') or [])
    timeline.append(_timeline_entry('confirmed', 'Payment successful'))
    ref.update({
        'payment.status': 'completed',
        'payment.transactionId': transaction_id,
        'payment.paidAt': now,
        'status': 'confirmed',
        'timeline': timeline,
        'updatedAt': now,
    })
    logger.info('Payment %s recorded for order %s', transaction_id, order_id)
    return _doc_to_dict(ref.get())


# ==================================================
# REVIEWS COLLECTION
# - list_product_reviews(): approved only
# - create_review(): one per user per product
# - update_review() / delete_review() / moderate_review()
# - update_product_rating(): re-read all approved reviews, O(n) per write
# ==================================================
def list_product_reviews(product_id: str) -> list:
    _require_db()
    docs = db.collection('reviews').where('productId', '==', product_id).where('status', '==', 'approved').get()
    return _sort_docs([_doc_to_dict(d) for d in docs], 'createdAt', True)


def update_product_rating(product_id: str) -> Tuple[float, int]:
    """Recompute stats.averageRating / stats.reviewCount from approved reviews."""
    _require_db()
    docs = db.collection('reviews').where('productId', '==', product_id).where('status', '==', 'approved').get()
    ratings = [float((d.to_dict() or {}).get('rating', 0)) for d in docs]
    count = len(ratings)
    average = sum(ratings) / count if count else 0

    product_ref = db.collection('products').document(product_id)
    if not product_ref.get().exists:
        logger.warning('Rating update skipped, product %s is gone', product_id)
        return average, count
    product_ref.update({'stats.reviewCount': count, 'stats.averageRating': average})
    return average, count


def _has_completed_purchase(uid: str, product_id: str) -> bool:
    docs = db.collection('orders').where('customerId', '==', uid).where('status', '==', 'completed').get()
    for doc in docs:
        if any(item.get('productId') == product_id for item in (doc.to_dict() or {}).get('items', [])):
            return True
    return False


def create_review(data: dict, user: dict) -> dict:
    _require_db()
    product_id = data['productId']
    _get_existing('products', product_id, 'Product not found', 'PRODUCT_NOT_FOUND')

    existing = db.collection('reviews').where('productId', '==', product_id).where('userId', '==', user['uid']).limit(1).get()
    if existing:
        raise AppError('You have already reviewed this product', 400, 'ALREADY_REVIEWED')

    now = _now()
    review = {
        'productId': product_id,
        'userId': user['uid'],
        'userName': user.get('displayName') or user.get('email', ''),
        'rating': int(data['rating']),
        'title': data.get('title', ''),
        'comment': data.get('comment', ''),
        'images': data.get('images') or [],
        'isVerifiedPurchase': _has_completed_purchase(user['uid'], product_id),
        'status': 'approved',
        'createdAt': now,
        'updatedAt': now,
    }
    _, ref = db.collection('reviews').add(review)
    update_product_rating(product_id)
    review['id'] = ref.id
    return review


def _owned_review(review_id: str, user: dict, allow_admin: bool = False):
    ref, snapshot = _get_existing('reviews', review_id, 'Review not found', 'REVIEW_NOT_FOUND')
    review = snapshot.to_dict() or {}
    is_admin = allow_admin and user.get('role') in ADMIN_ROLES
    if review.get('userId') != user.get('uid') and not is_admin:
        raise AppError('Unauthorized', 403, 'FORBIDDEN')
    return ref, review


def update_review(review_id: str, updates: dict, user: dict) -> dict:
    ref, review = _owned_review(review_id, user)
    updates = {k: v for k, v in updates.items() if v is not None}
    updates['updatedAt'] = _now()
    ref.update(updates)
    update_product_rating(review['productId'])
    return _doc_to_dict(ref.get())


def delete_review(review_id: str, user: dict) -> bool:
    ref, review = _owned_review(review_id, user, allow_admin=True)
    ref.delete()
    update_product_rating(review['productId'])
    return True


def moderate_review(review_id: str, status: str, user: dict) -> dict:
    ref, snapshot = _get_existing('reviews', review_id, 'Review not found', 'REVIEW_NOT_FOUND')
    ref.update({'status': status, 'updatedAt': _now()})
    update_product_rating((snapshot.to_dict() or {})['productId'])
    logger.info('Review %s set to %s by %s', review_id, status, _actor(user))
    return _doc_to_dict(ref.get())


# ==================================================
# USERS COLLECTION (document id = firebase uid)
# - create_user_profile() / get_user_profile() / touch_last_login()
# - list_users() / update_user_role() / deactivate_user()
# ==================================================
def create_user_profile(uid: str, email: str, display_name: str, phone_number: str = None,
                        role: str = 'customer') -> dict:
    _require_db()
    now = _now()
    profile = {
        'uid': uid,
        'email': email,
        'displayName': display_name,
        'phoneNumber': phone_number,
        'role': role,
        'addresses': [],
        'isActive': True,
        'createdAt': now,
        'updatedAt': now,
        'lastLogin': now,
    }
    db.collection('users').document(uid).set(profile)
    return profile


def get_user_profile(uid: str) -> Optional[dict]:
    _require_db()
    snapshot = db.collection('users').document(uid).get()
    return _doc_to_dict(snapshot) if snapshot.exists else None


def touch_last_login(uid: str):
    _require_db()
    db.collection('users').document(uid).update({'lastLogin': _now()})


def list_users() -> list:
    _require_db()
    users = []
    for doc in db.collection('users').get():
        data = doc.to_dict() or {}
        users.append({
            'uid': doc.id,
            'email': data.get('email'),
            'displayName': data.get('displayName'),
            'role': data.get('role', 'customer'),
            'isActive': data.get('isActive', True),
            'createdAt': data.get('createdAt'),
            'lastLogin': data.get('lastLogin'),
        })
    return _sort_docs(users, 'createdAt', True)


def _active_super_admins() -> int:
    docs = db.collection('users').where('role', '==', 'super_admin').get()
    return len([d for d in docs if (d.to_dict() or {}).get('isActive', True)])


def update_user_role(target_uid: str, role: str, user: Optional[dict] = None) -> bool:
    ref, snapshot = _get_existing('users', target_uid, 'User not found', 'USER_NOT_FOUND')
    current = (snapshot.to_dict() or {}).get('role')
    if 'super_admin' in (current, role) and (user or {}).get('role') != 'super_admin':
        raise AppError('Only a super admin can grant or revoke super admin', 403, 'FORBIDDEN')
    if current == 'super_admin' and role != 'super_admin' and _active_super_admins() <= 1:
        raise AppError('Cannot demote the only super admin.', 400, 'LAST_SUPER_ADMIN')
    ref.update({'role': role, 'updatedAt': _now()})
    logger.info('User %s role %s -> %s by %s', target_uid, current, role, _actor(user))
    return True


def deactivate_user(target_uid: str, user: Optional[dict] = None) -> bool:
    """Soft delete: isActive=false, profile kept."""
    ref, snapshot = _get_existing('users', target_uid, 'User not found', 'USER_NOT_FOUND')
    if user and user.get('uid') == target_uid:
        raise AppError('You cannot deactivate your own account', 400, 'SELF_DEACTIVATION')
    if (snapshot.to_dict() or {}).get('role') == 'super_admin' and _active_super_admins() <= 1:
        raise AppError('Cannot deactivate the only super admin.', 400, 'LAST_SUPER_ADMIN')
    ref.update({'isActive': False, 'updatedAt': _now()})
    logger.info('User %s deactivated by %s', target_uid, _actor(user))
    return True


# ==================================================
# SETTINGS (single document settings/siteSettings)
# ==================================================
DEFAULT_SETTINGS = {
    'siteTitle': 'PJA Stick & 3D Studio',
    'heroTitle': 'Transform Your Ideas into Reality',
    'heroSubtitle': 'Professional 3D Printing, Custom Stickers & Premium Printing Services',
    'whatsappNumber': config.SHOP_WHATSAPP_NUMBER,
    'socialLinks': {
        'instagram': 'https://www.instagram.com/pja_stick',
        'facebook': '',
        'twitter': '',
    },
    'counters': {
        'happyCustomers': 500,
        'projectsDone': 1200,
        'deliveryTime': '24-48 hours',
    },
    'billingUrl': 'https://pushkarjay.github.io/KII-PRINT-BILLING/',
    'logoUrl': '/assets/logos/logo-pja3d.jpg',
    'logoKitPrintUrl': '/assets/logos/logo-kitprint.jpg',
    'heroImageUrl': '',
}
SETTINGS_IMAGE_FIELDS = ('logo', 'logoKitPrint', 'heroImage')


def _settings_ref():
    _require_db()
    return db.collection('settings').document('siteSettings')


def get_settings() -> dict:
    """Stored settings over the built-in defaults."""
    snapshot = _settings_ref().get()
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    if snapshot.exists:
        settings.update(snapshot.to_dict() or {})
    return settings


def update_settings(updates: dict, user: Optional[dict] = None) -> dict:
    updates = dict(updates)
    updates['updatedAt'] = _now()
    _settings_ref().set(updates, merge=True)
    logger.info('Settings updated by %s', _actor(user))
    return get_settings()


def set_settings_image(field: str, url: str, user: Optional[dict] = None) -> dict:
    if field not in SETTINGS_IMAGE_FIELDS:
        raise AppError(f'Unknown image field {field}', 400, 'INVALID_FIELD')
    return update_settings({f'{field}Url': url}, user)


# ==================================================
# DROPDOWN OPTIONS (document id = field name)
# ==================================================
def get_dropdown_options(field_name: str = None) -> dict:
    _require_db()
    if field_name:
        snapshot = db.collection('dropdownOptions').document(field_name).get()
        values = (snapshot.to_dict() or {}).get('values', []) if snapshot.exists else []
        return {field_name: values}
    return {doc.id: (doc.to_dict() or {}).get('values', []) for doc in db.collection('dropdownOptions').get()}


def add_dropdown_option(field_name: str, value: str, user: Optional[dict] = None) -> bool:
    _require_db()
    ref = db.collection('dropdownOptions').document(field_name)
    now = _now()
    if ref.get().exists:
        ref.update({'values': firestore.ArrayUnion([value]), 'lastUpdated': now})
    else:
        ref.set({'values': [value], 'createdAt': now, 'lastUpdated': now})
    logger.info('Dropdown option added to "%s": %s by %s', field_name, value, _actor(user))
    return True


def remove_dropdown_option(field_name: str, value: str, user: Optional[dict] = None) -> bool:
    ref, _ = _get_existing('dropdownOptions', field_name,
                           f'Field "{field_name}" not found. Check spelling of fieldName.', 'FIELD_NOT_FOUND')
    ref.update({'values': firestore.ArrayRemove([value]), 'lastUpdated': _now()})
    logger.info('Dropdown option removed from "%s": %s by %s', field_name, value, _actor(user))
    return True


# ==================================================
# BILLING (single document billing/global, rewritten on every edit)
# - get_billing_data() / save_billing_data() / reset_billing_data()
# - add_expense() / delete_expense() / update_stock()
# - add_daily_entry() / delete_daily_entry()
# - record_bill_sale(): bill -> Sale expense + stock sold/earned
# ==================================================
DEFAULT_STOCK_ITEMS = [
    {'type': 'Plain', 'invested': 0, 'earned': 0, 'bought': 0, 'sold': 0},
    {'type': 'Sticker', 'invested': 0, 'earned': 0, 'bought': 0, 'sold': 0},
    {'type': 'Photo', 'invested': 0, 'earned': 0, 'bought': 0, 'sold': 0},
    {'type': 'Stick File', 'invested': 0, 'earned': 0, 'bought': 0, 'sold': 0},
    {'type': 'Label', 'invested': 0, 'earned': 0, 'bought': 0, 'sold': 0},
]


def _billing_ref():
    _require_db()
    return db.collection('billing').document('global')


def _new_entry_id() -> str:
    return str(int(_now().timestamp() * 1000)) + f'{random.randint(0, 999):03d}'


def get_billing_data() -> dict:
    snapshot = _billing_ref().get()
    data = {'billingItems': [], 'expenses': [], 'stockItems': [], 'dailySummary': []}
    if snapshot.exists:
        data.update(snapshot.to_dict() or {})
    return data


def save_billing_data(payload: dict, user: Optional[dict] = None) -> bool:
    _billing_ref().set({
        'billingItems': payload.get('billingItems') or [],
        'expenses': payload.get('expenses') or [],
        'stockItems': payload.get('stockItems') or [],
        'dailySummary': payload.get('dailySummary') or [],
        'updatedAt': _now(),
        'updatedBy': _actor(user),
    }, merge=True)
    logger.info('Billing data updated by %s', _actor(user))
    return True


def add_expense(expense: dict, user: Optional[dict] = None) -> dict:
    ref = _billing_ref()
    expenses = list(get_billing_data().get('expenses') or [])
    now = _now()
    entry = {
        'id': _new_entry_id(),
        'date': expense.get('date') or now.isoformat(),
        'description': expense['description'],
        'category': expense.get('category') or 'Sale',
        'amount': float(expense['amount']),
        'type': expense.get('type') or 'Earned',
        'quantity': int(expense.get('quantity') or 0),
        'createdAt': now.isoformat(),
    }
    expenses.append(entry)
    ref.set({'expenses': expenses, 'updatedAt': now, 'updatedBy': _actor(user)}, merge=True)
    logger.info('Expense added: %s by %s', entry['description'], _actor(user))
    return entry


def delete_expense(expense_id: str, user: Optional[dict] = None) -> bool:
    expenses = list(get_billing_data().get('expenses') or [])
    remaining = [e for e in expenses if e.get('id') != expense_id]
    if len(remaining) == len(expenses):
        raise AppError('Expense not found', 404, 'EXPENSE_NOT_FOUND')
    _billing_ref().set({'expenses': remaining, 'updatedAt': _now(), 'updatedBy': _actor(user)}, merge=True)
    logger.info('Expense deleted: %s by %s', expense_id, _actor(user))
    return True


def update_stock(stock_items: list, user: Optional[dict] = None) -> bool:
    _billing_ref().set({'stockItems': stock_items or [], 'updatedAt': _now(), 'updatedBy': _actor(user)}, merge=True)
    logger.info('Stock updated by %s', _actor(user))
    return True


def reset_billing_data(user: Optional[dict] = None) -> bool:
    now = _now()
    _billing_ref().set({
        'billingItems': [],
        'expenses': [],
        'stockItems': [],
        'dailySummary': [],
        'updatedAt': now,
        'updatedBy': _actor(user),
        'resetAt': now,
    })
    logger.info('Billing data reset by %s', _actor(user))
    return True


def add_daily_entry(entry: dict, user: Optional[dict] = None) -> dict:
    daily = list(get_billing_data().get('dailySummary') or [])
    record = {
        'id': _new_entry_id(),
        'date': entry['date'],
        'paperCount': int(entry.get('paperCount') or 0),
        'amount': float(entry.get('amount') or 0),
    }
    daily.append(record)
    _billing_ref().set({'dailySummary': daily, 'updatedAt': _now(), 'updatedBy': _actor(user)}, merge=True)
    return record


def delete_daily_entry(entry_id: str, user: Optional[dict] = None) -> bool:
    daily = list(get_billing_data().get('dailySummary') or [])
    remaining = [d for d in daily if d.get('id') != entry_id]
    if len(remaining) == len(daily):
        raise AppError('Daily entry not found', 404, 'ENTRY_NOT_FOUND')
    _billing_ref().set({'dailySummary': remaining, 'updatedAt': _now(), 'updatedBy': _actor(user)}, merge=True)
    return True


def record_bill_sale(bill: dict, user: Optional[dict] = None) -> dict:
    """Save a computed bill as a Sale expense and move sold quantities into stock."""
    if bill['total'] <= 0:
        raise AppError('Cannot save an empty bill.', 400, 'EMPTY_BILL')
    data = get_billing_data()
    stock = [dict(s) for s in (data.get('stockItems') or DEFAULT_STOCK_ITEMS)]
    by_type = {str(s.get('type', '')).lower(): s for s in stock}
    for line in bill['items']:
        target = by_type.get(str(line.get('stockType') or '').lower())
        if target and line['quantity'] > 0:
            target['sold'] = target.get('sold', 0) + line['quantity']
            target['earned'] = round(target.get('earned', 0) + line['finalPrice'], 2)
    update_stock(stock, user)

    customer = (bill.get('customerName') or '').strip()
    return add_expense({
        'description': f'Sale to {customer}' if customer else 'Walk-in Sale',
        'category': 'Sale',
        'amount': bill['total'],
        'type': 'Earned',
        'date': bill.get('date'),
        'quantity': bill['totalQuantity'],
    }, user)


# ==================================================
# DASHBOARD / ANALYTICS
# ==================================================
def get_dashboard_stats() -> dict:
    _require_db()
    orders = [_doc_to_dict(d) for d in db.collection('orders').get()]
    total_revenue = sum(float((o.get('pricing') or {}).get('total', 0)) for o in orders if o.get('status') == 'completed')
    return {
        'stats': {
            'totalProducts': len(db.collection('products').where('isActive', '==', True).get()),
            'totalOrders': len(orders),
            'totalUsers': len(db.collection('users').get()),
            'pendingOrders': len([o for o in orders if o.get('status') == 'pending']),
            'totalRevenue': round(total_revenue, 2),
        },
        'recentOrders': _sort_docs(orders, 'createdAt', True)[:10],
    }


def get_analytics(period: str = '30d') -> dict:
    _require_db()
    try:
        days = int(str(period).rstrip('dD'))
    except ValueError:
        days = 30
    start = _now() - timedelta(days=days)
    orders = [d.to_dict() or {} for d in db.collection('orders').where('createdAt', '>=', start).get()]

    top_products = {}
    revenue = 0.0
    for order in orders:
        revenue += float((order.get('pricing') or {}).get('total', 0))
        for item in order.get('items', []):
            entry = top_products.setdefault(item['productId'], {'name': item.get('productName'), 'count': 0, 'revenue': 0.0})
            entry['count'] += int(item.get('quantity', 0))
            entry['revenue'] = round(entry['revenue'] + float(item.get('subtotal', 0)), 2)

    return {
        'period': f'{days}d',
        'totalOrders': len(orders),
        'totalRevenue': round(revenue, 2),
        'averageOrderValue': round(revenue / len(orders), 2) if orders else 0,
        'topProducts': top_products,
    }


# ==================================================
# FIRST RUN SEED
# ==================================================
DEFAULT_CATEGORIES = [
    {'name': 'Stickers', 'slug': 'stickers'},
    {'name': 'Banners', 'slug': 'banners'},
    {'name': 'Signboards', 'slug': 'signboards'},
    {'name': 'T-Shirts', 'slug': 't-shirts'},
    {'name': '3D Printing', 'slug': '3d-printing'},
]
DEFAULT_DROPDOWNS = {
    'priceTier': ['A', 'B', 'C', 'D'],
    'productionTime': ['1-2 days', '3-5 days', '1-2 weeks'],
    'difficulty': ['Easy', 'Medium', 'Hard'],
}


def initialize_database() -> dict:
    """Seed default categories, dropdown options, settings and billing stock."""
    _require_db()
    created = {'categories': 0, 'dropdowns': 0, 'settings': False, 'billing': False}
    for category in DEFAULT_CATEGORIES:
        if not _slug_owner(category['slug']):
            create_category(category)
            created['categories'] += 1
    for field_name, values in DEFAULT_DROPDOWNS.items():
        ref = db.collection('dropdownOptions').document(field_name)
        if not ref.get().exists:
            now = _now()
            ref.set({'values': values, 'createdAt': now, 'lastUpdated': now})
            created['dropdowns'] += 1
    if not _settings_ref().get().exists:
        _settings_ref().set(dict(DEFAULT_SETTINGS))
        created['settings'] = True
    if not _billing_ref().get().exists:
        _billing_ref().set({'billingItems': [], 'expenses': [], 'stockItems': DEFAULT_STOCK_ITEMS, 'dailySummary': []})
        created['billing'] = True
    logger.info('Database initialised: %s', created)
    return created
