import logging
import traceback
from datetime import date, datetime, timezone

import click
import jwt
from firebase_admin import exceptions as firebase_exceptions
from flask import Flask, g, jsonify, request, send_file
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import config
import dbhelper
import authhelper
import storagehelper
import whatsapphelper
import paymenthelper
import importhelper
import reporthelper
from authhelper import require_auth, optional_auth, require_admin, require_super_admin
from errors import AppError, firebase_auth_message
from schemas import (
    AdminCreate, BillRequest, BulkProducts, CartAdd, CartUpdate, CategoryCreate, CategoryUpdate,
    DailyEntryCreate, DropdownOption, ExpenseCreate, GuestOrderCreate, LoginPayload, OrderCreate,
    OrderStatusUpdate, PaymentCreate, PaymentVerify, ProductCreate, ProductUpdate, RegisterPayload,
    ReviewCreate, ReviewModerate, ReviewUpdate, RoleUpdate, UploadUrlRequest, WhatsAppLinkRequest,
)

config.setup_logging()
logger = logging.getLogger(__name__)


class FirestoreJSONProvider(DefaultJSONProvider):
    """Serialise Firestore timestamps as ISO 8601 strings."""

    @staticmethod
    def default(o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


app = Flask(__name__)
app.json = FirestoreJSONProvider(app)
app.config['MAX_CONTENT_LENGTH'] = config.MAX_CONTENT_LENGTH

cors_origins = '*' if config.CORS_ORIGINS == '*' else [o.strip() for o in config.CORS_ORIGINS.split(',') if o.strip()]
CORS(app, resources={r'/api/*': {'origins': cors_origins}}, supports_credentials=cors_origins != '*')


# HELPERS
def ok(data=None, message=None, status=200):
    body = {'success': True}
    if data is not None:
        body['data'] = data
    if message:
        body['message'] = message
    return jsonify(body), status


def body_as(model):
    """Validate the JSON body against a pydantic model (ValidationError -> 400)."""
    return model.model_validate(request.get_json(silent=True) or {})


def arg_bool(name):
    value = request.args.get(name)
    if value is None or value == '':
        return None
    return value.lower() == 'true'


def _timestamp():
    return datetime.now(timezone.utc).isoformat()


# ==================================================
# ERROR HANDLING + REQUEST LOG
# ==================================================
@app.errorhandler(Exception)
def handle_error(e):
    details = None
    if isinstance(e, AppError):
        status, code, message, details = e.status_code, e.code, e.message, e.details
    elif isinstance(e, ValidationError):
        status, code, message = 400, 'VALIDATION_ERROR', 'Validation failed'
        details = [
            {'field': '.'.join(str(part) for part in err['loc']), 'message': err['msg']}
            for err in e.errors()
        ]
    elif isinstance(e, jwt.ExpiredSignatureError):
        status, code, message = 401, 'TOKEN_EXPIRED', 'Token expired'
    elif isinstance(e, jwt.InvalidTokenError):
        status, code, message = 401, 'INVALID_TOKEN', 'Invalid token'
    elif isinstance(e, firebase_exceptions.FirebaseError):
        status, code, message = 401, 'AUTH_ERROR', firebase_auth_message(e)
    elif isinstance(e, RequestEntityTooLarge):
        status, code, message = 400, 'FILE_UPLOAD_ERROR', 'File size too large. Maximum size is 10MB.'
    elif isinstance(e, HTTPException):
        status = e.code or 500
        code = (e.name or 'Error').upper().replace(' ', '_')
        message = e.description or e.name
    else:
        status, code, message = 500, 'INTERNAL_ERROR', 'Internal Server Error'

    if status >= 500:
        logger.error('%s %s from %s failed', request.method, request.path, request.remote_addr, exc_info=e)
    else:
        logger.warning('%s %s from %s -> %s %s: %s', request.method, request.path, request.remote_addr, status, code, message)

    error = {'code': code, 'message': message}
    if details:
        error['details'] = details
    if status >= 500 and config.is_development():
        error['stack'] = ''.join(traceback.format_exception(type(e), e, e.__traceback__))
    return jsonify({'success': False, 'error': error, 'timestamp': _timestamp()}), status


@app.after_request
def log_request(response):
    logger.info('%s %s %s %s', request.method, request.path, response.status_code, request.remote_addr)
    return response


@app.route('/health')
def health():
    return jsonify({'status': 'ok', 'environment': config.ENVIRONMENT, 'timestamp': _timestamp()})


# ==================================================
# AUTH ROUTES
# ==================================================
@app.route('/api/auth/register', methods=['POST'])
def register():
    payload = body_as(RegisterPayload)
    result = authhelper.register_user(payload.email, payload.password, payload.displayName, payload.phoneNumber)
    return ok(result, 'User registered successfully', 201)


@app.route('/api/auth/login', methods=['POST'])
def login():
    payload = body_as(LoginPayload)
    return ok(authhelper.login_user(payload.email, payload.password), 'Login successful')


@app.route('/api/auth/logout', methods=['POST'])
def logout():
    # tokens are stateless, the client drops its copy
    return ok(message='Logged out successfully')


@app.route('/api/auth/refresh', methods=['POST'])
def refresh():
    token = (request.get_json(silent=True) or {}).get('token') or authhelper.get_bearer_token()
    if not token:
        raise AppError('No token provided', 401, 'UNAUTHORIZED')
    return ok({'token': authhelper.refresh_token(token)}, 'Token refreshed')


@app.route('/api/auth/forgot-password', methods=['POST'])
def forgot_password():
    email = (request.get_json(silent=True) or {}).get('email')
    if not email:
        raise AppError('Email is required', 400, 'VALIDATION_ERROR')
    try:
        authhelper.password_reset_link(email)
    except firebase_exceptions.NotFoundError:
        # same answer whether or not the account exists
        logger.info('Password reset requested for unknown email')
    return ok(message='If an account exists for that email, a reset link has been sent')


@app.route('/api/auth/me')
@require_auth
def me():
    profile = dbhelper.get_user_profile(g.user['uid'])
    return ok(profile or g.user)


# ==================================================
# PRODUCT ROUTES (public)
# ==================================================
@app.route('/api/products')
@optional_auth
def list_products():
    products, pagination = dbhelper.list_products(
        category=request.args.get('category'),
        search=request.args.get('search'),
        min_price=request.args.get('minPrice', type=float),
        max_price=request.args.get('maxPrice', type=float),
        featured=arg_bool('featured'),
        active=request.args.get('isActive', 'true').lower(),
        sort=request.args.get('sort', 'createdAt'),
        order=request.args.get('order', 'desc').lower(),
        page=request.args.get('page', 1, type=int),
        limit=request.args.get('limit', 12, type=int),
    )
    return jsonify({'success': True, 'data': products, 'pagination': pagination})


@app.route('/api/products/search')
def search_products():
    return ok(dbhelper.search_products(request.args.get('q', '')))


@app.route('/api/products/category/<category>')
def products_by_category(category):
    return ok(dbhelper.get_products_by_category(category))


@app.route('/api/products/<product_id>')
def get_product(product_id):
    return ok(dbhelper.get_product(product_id))


# ==================================================
# CATEGORY ROUTES
# ==================================================
@app.route('/api/categories')
def list_categories():
    return ok(dbhelper.list_categories())


@app.route('/api/categories', methods=['POST'])
@require_admin
def create_category():
    category = dbhelper.create_category(body_as(CategoryCreate).model_dump(), g.user)
    return ok(category, 'Category created successfully', 201)


@app.route('/api/categories/<category_id>', methods=['PUT'])
@require_admin
def update_category(category_id):
    updates = body_as(CategoryUpdate).model_dump(exclude_unset=True)
    return ok(dbhelper.update_category(category_id, updates, g.user), 'Category updated successfully')


@app.route('/api/categories/<category_id>', methods=['DELETE'])
@require_admin
def delete_category(category_id):
    dbhelper.delete_category(category_id, g.user)
    return ok(message='Category deleted successfully')


# ==================================================
# CART ROUTES
# ==================================================
@app.route('/api/cart')
@require_auth
def get_cart():
    return ok(dbhelper.get_cart(g.user['uid']))


@app.route('/api/cart/add', methods=['POST'])
@require_auth
def add_to_cart():
    payload = body_as(CartAdd)
    return ok(dbhelper.add_to_cart(g.user['uid'], payload.productId, payload.quantity), 'Item added to cart')


@app.route('/api/cart/update/<product_id>', methods=['PUT'])
@require_auth
def update_cart_item(product_id):
    dbhelper.update_cart_item(g.user['uid'], product_id, body_as(CartUpdate).quantity)
    return ok(message='Cart updated')


@app.route('/api/cart/remove/<product_id>', methods=['DELETE'])
@require_auth
def remove_from_cart(product_id):
    dbhelper.remove_from_cart(g.user['uid'], product_id)
    return ok(message='Item removed from cart')


@app.route('/api/cart/clear', methods=['DELETE'])
@require_auth
def clear_cart():
    dbhelper.clear_cart(g.user['uid'])
    return ok(message='Cart cleared')


# ==================================================
# ORDER ROUTES
# ==================================================
def _order_response(order):
    """Notify the shop (best effort) and attach the customer's wa.me link."""
    notification = whatsapphelper.send_order_notification(order)
    if not notification.get('success'):
        logger.warning('Order %s notification not sent: %s', order['orderNumber'], notification.get('error'))
    return {
        'order': order,
        'whatsappLink': whatsapphelper.create_whatsapp_link(whatsapphelper.format_checkout_message(order)),
    }


@app.route('/api/orders', methods=['POST'])
@optional_auth
def create_guest_order():
    payload = body_as(GuestOrderCreate)
    customer = {
        'customerId': g.user['uid'] if g.user else None,
        'customerName': payload.customerName,
        'customerEmail': payload.customerEmail,
        'customerPhone': payload.customerPhone,
    }
    order = dbhelper.create_order(
        [item.model_dump() for item in payload.items], customer,
        payload.shippingAddress, payload.paymentMethod, payload.notes,
    )
    return ok(_order_response(order), 'Order created successfully', 201)


@app.route('/api/orders/create', methods=['POST'])
@require_auth
def create_order():
    payload = body_as(OrderCreate)
    profile = dbhelper.get_user_profile(g.user['uid']) or {}
    customer = {
        'customerId': g.user['uid'],
        'customerName': payload.customerName or g.user.get('displayName') or profile.get('displayName'),
        'customerEmail': g.user.get('email'),
        'customerPhone': payload.customerPhone or profile.get('phoneNumber'),
    }
    order = dbhelper.create_order(
        [item.model_dump() for item in payload.items], customer,
        payload.shippingAddress, payload.paymentMethod, payload.notes,
    )
    dbhelper.clear_cart(g.user['uid'])
    return ok(_order_response(order), 'Order created successfully', 201)


@app.route('/api/orders')
@require_auth
def my_orders():
    return ok(dbhelper.list_user_orders(g.user['uid']))


@app.route('/api/orders/<order_id>')
@require_auth
def get_order(order_id):
    return ok(dbhelper.get_order_for_user(order_id, g.user))


@app.route('/api/orders/<order_id>/cancel', methods=['PUT'])
@require_auth
def cancel_order(order_id):
    return ok(dbhelper.cancel_order(order_id, g.user), 'Order cancelled successfully')


@app.route('/api/orders/<order_id>/track')
def track_order(order_id):
    return ok(dbhelper.track_order(order_id))


# ==================================================
# REVIEW ROUTES
# ==================================================
@app.route('/api/reviews/<product_id>')
def product_reviews(product_id):
    return ok(dbhelper.list_product_reviews(product_id))


@app.route('/api/reviews', methods=['POST'])
@require_auth
def create_review():
    review = dbhelper.create_review(body_as(ReviewCreate).model_dump(), g.user)
    return ok(review, 'Review submitted successfully', 201)


@app.route('/api/reviews/<review_id>', methods=['PUT'])
@require_auth
def update_review(review_id):
    updates = body_as(ReviewUpdate).model_dump(exclude_unset=True)
    return ok(dbhelper.update_review(review_id, updates, g.user), 'Review updated successfully')


@app.route('/api/reviews/<review_id>', methods=['DELETE'])
@require_auth
def delete_review(review_id):
    dbhelper.delete_review(review_id, g.user)
    return ok(message='Review deleted successfully')


# ==================================================
# ADMIN ROUTES
# ==================================================
@app.route('/api/admin/dashboard')
@require_admin
def admin_dashboard():
    return ok(dbhelper.get_dashboard_stats())


@app.route('/api/admin/analytics')
@require_admin
def admin_analytics():
    return ok(dbhelper.get_analytics(request.args.get('period', '30d')))


@app.route('/api/admin/products', methods=['POST'])
@require_admin
def admin_create_product():
    product = dbhelper.create_product(body_as(ProductCreate).model_dump(exclude_none=True), g.user)
    return ok(product, 'Product created successfully', 201)


@app.route('/api/admin/products/bulk', methods=['POST'])
@require_admin
def admin_bulk_products():
    payload = body_as(BulkProducts)
    ids = dbhelper.bulk_create_products([p.model_dump(exclude_none=True) for p in payload.products], g.user)
    return ok({'count': len(ids), 'ids': ids}, f'{len(ids)} products uploaded successfully', 201)


@app.route('/api/admin/products/<product_id>', methods=['PUT'])
@require_admin
def admin_update_product(product_id):
    updates = body_as(ProductUpdate).model_dump(exclude_unset=True)
    return ok(dbhelper.update_product(product_id, updates, g.user), 'Product updated successfully')


@app.route('/api/admin/products/<product_id>', methods=['DELETE'])
@require_admin
def admin_delete_product(product_id):
    dbhelper.archive_product(product_id, g.user)
    return ok(message='Product archived successfully')


@app.route('/api/admin/upload-url', methods=['POST'])
@require_admin
def admin_upload_url():
    payload = body_as(UploadUrlRequest)
    return ok(storagehelper.signed_upload_url(payload.fileName, payload.contentType))


@app.route('/api/admin/orders')
@require_admin
def admin_orders():
    orders, pagination = dbhelper.list_orders(
        status=request.args.get('status'),
        page=request.args.get('page', 1, type=int),
        limit=request.args.get('limit', 20, type=int),
    )
    return jsonify({'success': True, 'data': orders, 'pagination': pagination})


@app.route('/api/admin/orders/<order_id>', methods=['PUT'])
@require_admin
def admin_update_order(order_id):
    payload = body_as(OrderStatusUpdate)
    order = dbhelper.update_order_status(order_id, payload.status, payload.note, g.user)
    return ok(order, 'Order status updated successfully')


@app.route('/api/admin/reviews/<review_id>', methods=['PUT'])
@require_admin
def admin_moderate_review(review_id):
    review = dbhelper.moderate_review(review_id, body_as(ReviewModerate).status, g.user)
    return ok(review, 'Review updated successfully')


@app.route('/api/admin/users')
@require_admin
def admin_users():
    return ok(dbhelper.list_users())


@app.route('/api/admin/users/<uid>/role', methods=['PUT'])
@require_admin
def admin_update_role(uid):
    dbhelper.update_user_role(uid, body_as(RoleUpdate).role, g.user)
    return ok(message='User role updated successfully')


# ==================================================
# USERS ROUTES
# ==================================================
@app.route('/api/users')
@require_admin
def list_users():
    return ok(dbhelper.list_users())


@app.route('/api/users/create-admin', methods=['POST'])
@require_admin
def create_admin():
    payload = body_as(AdminCreate)
    if payload.role == 'super_admin' and g.user.get('role') != 'super_admin':
        raise AppError('Only a super admin can create another super admin', 403, 'FORBIDDEN')
    account = authhelper.create_admin_account(payload.email, payload.password, payload.displayName, payload.role)
    logger.info('%s created by %s', payload.email, g.user.get('email'))
    return ok(account, 'Admin user created successfully', 201)


@app.route('/api/users/<uid>/role', methods=['PUT'])
@require_admin
def update_user_role(uid):
    dbhelper.update_user_role(uid, body_as(RoleUpdate).role, g.user)
    return ok(message='User role updated successfully')


@app.route('/api/users/<uid>', methods=['DELETE'])
@require_super_admin
def deactivate_user(uid):
    dbhelper.deactivate_user(uid, g.user)
    authhelper.disable_firebase_user(uid)
    return ok(message='User deactivated successfully')


# ==================================================
# UPLOAD ROUTES
# ==================================================
@app.route('/api/upload/product', methods=['POST'])
@require_admin
def upload_product_image():
    image = request.files.get('image')
    if image is None or not image.filename:
        raise AppError('No file uploaded', 400, 'NO_FILE')
    return ok(storagehelper.upload_image(image), 'Image uploaded successfully', 201)


@app.route('/api/upload/product/<path:file_name>', methods=['DELETE'])
@require_admin
def delete_product_image(file_name):
    if not file_name.startswith('products/'):
        file_name = f'products/{file_name}'
    storagehelper.delete_image(file_name)
    return ok(message='Image deleted successfully')


# ==================================================
# SETTINGS ROUTES
# ==================================================
@app.route('/api/settings')
def get_settings():
    return ok(dbhelper.get_settings())


@app.route('/api/settings/admin')
@require_admin
def admin_get_settings():
    return ok(dbhelper.get_settings())


@app.route('/api/settings/admin', methods=['PUT'])
@require_admin
def admin_update_settings():
    updates = request.get_json(silent=True)
    if not isinstance(updates, dict) or not updates:
        raise AppError('No settings provided', 400, 'VALIDATION_ERROR')
    updates.pop('updatedAt', None)
    return ok(dbhelper.update_settings(updates, g.user), 'Settings updated successfully')


@app.route('/api/settings/admin/image/<field>', methods=['POST'])
@require_admin
def admin_settings_image(field):
    if field not in dbhelper.SETTINGS_IMAGE_FIELDS:
        raise AppError(f'Unknown image field {field}', 400, 'INVALID_FIELD')
    image = request.files.get('image')
    if image is None or not image.filename:
        raise AppError('No file uploaded', 400, 'NO_FILE')
    uploaded = storagehelper.upload_image(image, folder='settings')
    return ok(dbhelper.set_settings_image(field, uploaded['url'], g.user), 'Image updated successfully')


# ==================================================
# DROPDOWN ROUTES
# ==================================================
@app.route('/api/dropdowns')
def get_dropdowns():
    return ok(dbhelper.get_dropdown_options(request.args.get('fieldName')))


@app.route('/api/dropdowns', methods=['POST'])
@require_admin
def add_dropdown():
    payload = body_as(DropdownOption)
    dbhelper.add_dropdown_option(payload.fieldName, payload.value.strip(), g.user)
    return ok(message=f'Option "{payload.value}" added to "{payload.fieldName}"', status=201)


@app.route('/api/dropdowns', methods=['DELETE'])
@require_admin
def remove_dropdown():
    payload = body_as(DropdownOption)
    dbhelper.remove_dropdown_option(payload.fieldName, payload.value, g.user)
    return ok(message=f'Option "{payload.value}" removed from "{payload.fieldName}"')


# ==================================================
# BILLING ROUTES
# ==================================================
@app.route('/api/billing')
@require_admin
def get_billing():
    return ok(dbhelper.get_billing_data())


@app.route('/api/billing', methods=['POST'])
@require_admin
def save_billing():
    dbhelper.save_billing_data(request.get_json(silent=True) or {}, g.user)
    return ok(message='Billing data saved successfully')


@app.route('/api/billing/expenses', methods=['POST'])
@require_admin
def add_expense():
    entry = dbhelper.add_expense(body_as(ExpenseCreate).model_dump(), g.user)
    return ok(entry, 'Expense added successfully', 201)


@app.route('/api/billing/expenses/<expense_id>', methods=['DELETE'])
@require_admin
def delete_expense(expense_id):
    dbhelper.delete_expense(expense_id, g.user)
    return ok(message='Expense deleted successfully')


@app.route('/api/billing/stock', methods=['PUT'])
@require_admin
def update_stock():
    stock_items = (request.get_json(silent=True) or {}).get('stockItems')
    if not isinstance(stock_items, list):
        raise AppError('stockItems must be a list', 400, 'VALIDATION_ERROR')
    dbhelper.update_stock(stock_items, g.user)
    return ok(message='Stock updated successfully')


@app.route('/api/billing/reset', methods=['DELETE'])
@require_admin
def reset_billing():
    dbhelper.reset_billing_data(g.user)
    return ok(message='All billing data has been reset')


@app.route('/api/billing/summary')
@require_admin
def billing_summary():
    return ok(reporthelper.billing_summary(dbhelper.get_billing_data().get('expenses') or []))


@app.route('/api/billing/daily')
@require_admin
def billing_daily():
    data = dbhelper.get_billing_data()
    return ok(reporthelper.daily_summary(data.get('expenses') or [], data.get('dailySummary') or []))


@app.route('/api/billing/daily', methods=['POST'])
@require_admin
def add_daily_entry():
    entry = dbhelper.add_daily_entry(body_as(DailyEntryCreate).model_dump(), g.user)
    return ok(entry, 'Daily entry added', 201)


@app.route('/api/billing/daily/<entry_id>', methods=['DELETE'])
@require_admin
def delete_daily_entry(entry_id):
    dbhelper.delete_daily_entry(entry_id, g.user)
    return ok(message='Daily entry deleted')


@app.route('/api/billing/bill', methods=['POST'])
@require_admin
def compute_bill():
    payload = body_as(BillRequest)
    bill = reporthelper.compute_bill([i.model_dump() for i in payload.items], payload.customerName, payload.date)
    if payload.save:
        bill['expense'] = dbhelper.record_bill_sale(bill, g.user)
        return ok(bill, 'Bill saved successfully', 201)
    return ok(bill)


@app.route('/api/billing/bill/pdf', methods=['POST'])
@require_admin
def bill_pdf():
    payload = body_as(BillRequest)
    bill = reporthelper.compute_bill([i.model_dump() for i in payload.items], payload.customerName, payload.date)
    filename = f"bill_{datetime.now().strftime('%Y%m%d_%H%M%S')}.pdf"
    return send_file(reporthelper.bill_pdf(bill), download_name=filename, as_attachment=True,
                     mimetype='application/pdf')


@app.route('/api/billing/export')
@require_admin
def export_billing():
    fmt = request.args.get('format', 'xlsx').lower()
    expenses = dbhelper.get_billing_data().get('expenses') or []
    filename = f"expenses_{datetime.now().strftime('%Y%m%d')}"
    if fmt == 'xlsx':
        return send_file(reporthelper.export_expenses_xlsx(expenses), download_name=f'{filename}.xlsx', as_attachment=True,
                         mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')
    if fmt == 'csv':
        return send_file(reporthelper.export_expenses_csv(expenses), download_name=f'{filename}.csv', as_attachment=True,
                         mimetype='text/csv')
    raise AppError('Invalid format', 400, 'INVALID_FORMAT')


# ==================================================
# IMPORT ROUTES
# ==================================================
@app.route('/api/import/products-csv', methods=['POST'])
@app.route('/api/admin/import', methods=['POST'])
@require_admin
def import_products():
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise AppError('CSV file is required', 400, 'MISSING_FILE')
    logger.info('Starting CSV import for file: %s by %s', upload.filename, g.user.get('email'))
    results = importhelper.import_products_csv(upload.read(), g.user)
    return ok(results, 'CSV import completed')


# ==================================================
# PAYMENT ROUTES (razorpay)
# ==================================================
@app.route('/api/payment/create', methods=['POST'])
@require_auth
def create_payment():
    order = dbhelper.get_order_for_user(body_as(PaymentCreate).orderId, g.user)
    razorpay_order = paymenthelper.create_razorpay_order(
        order['pricing']['total'], order['orderNumber'],
        {'orderId': order['id'], 'customerId': g.user['uid']},
    )
    dbhelper.set_payment_reference(order['id'], razorpay_order['orderId'])
    return ok(razorpay_order)


@app.route('/api/payment/verify', methods=['POST'])
@require_auth
def verify_payment():
    payload = body_as(PaymentVerify)
    if not paymenthelper.verify_payment_signature(payload.razorpay_order_id, payload.razorpay_payment_id,
                                                  payload.razorpay_signature):
        raise AppError('Invalid payment signature', 400, 'INVALID_SIGNATURE')
    dbhelper.get_order_for_user(payload.orderId, g.user)
    dbhelper.mark_order_paid(payload.orderId, payload.razorpay_payment_id)
    return ok(message='Payment verified successfully')


@app.route('/api/payment/webhook', methods=['POST'])
def payment_webhook():
    raw = request.get_data()
    if not paymenthelper.verify_webhook_signature(raw, request.headers.get('X-Razorpay-Signature', '')):
        raise AppError('Invalid webhook signature', 400, 'INVALID_SIGNATURE')

    event = request.get_json(silent=True) or {}
    name = event.get('event')
    entity = ((event.get('payload') or {}).get('payment') or {}).get('entity') or {}
    logger.info('Webhook received: %s', name)
    if name == 'payment.captured':
        order_id = (entity.get('notes') or {}).get('orderId')
        if order_id:
            order = dbhelper.get_order(order_id)
            if (order.get('payment') or {}).get('status') != 'completed':
                dbhelper.mark_order_paid(order_id, entity.get('id'))
    elif name == 'payment.failed':
        logger.warning('Payment failed: %s', entity.get('id'))
    return jsonify({'status': 'ok'})


# ==================================================
# WHATSAPP ROUTES
# ==================================================
@app.route('/api/whatsapp/link', methods=['POST'])
def whatsapp_link():
    payload = body_as(WhatsAppLinkRequest)
    if payload.kind == 'product':
        if not payload.productId:
            raise AppError('productId is required', 400, 'VALIDATION_ERROR')
        product = dbhelper.get_product(payload.productId, count_view=False)
        message = whatsapphelper.format_product_message(product, payload.quantity)
    else:
        if not payload.message:
            raise AppError('message is required', 400, 'VALIDATION_ERROR')
        message = whatsapphelper.format_inquiry_message(payload.subject or 'General inquiry', payload.message)
    number = dbhelper.get_settings().get('whatsappNumber') or config.SHOP_WHATSAPP_NUMBER
    return ok({'link': whatsapphelper.create_whatsapp_link(message, number), 'message': message})


# ==================================================
# CLI (flask --app app init-db / create-admin)
# ==================================================
@app.cli.command('init-db')
def init_db_command():
    """Seed categories, dropdown options, settings and billing stock."""
    created = dbhelper.initialize_database()
    click.echo(f'Database initialised: {created}')


@app.cli.command('create-admin')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--name', 'display_name', default=None)
@click.option('--super', 'is_super', is_flag=True, help='Create a super_admin instead of an admin.')
def create_admin_command(email, password, display_name, is_super):
    """Create an admin account in Firebase Auth and Firestore."""
    account = authhelper.create_admin_account(email, password, display_name, 'super_admin' if is_super else 'admin')
    click.echo(f"Created {account['role']} {account['email']} ({account['uid']})")


if __name__ == '__main__':
    app.run(debug=config.is_development(), host='0.0.0.0', port=config.PORT)
