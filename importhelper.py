import io
import re
import json
import logging

import pandas as pd

import dbhelper
from errors import AppError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('name', 'category_slug', 'basePrice')
LIST_COLUMNS = ('tags', 'features', 'images')
JSON_COLUMNS = ('cost', 'specifications')
# plain decimals only; nan, inf and 1_000 stay text
NUMBER_PATTERN = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)$')
# Firestore caps a write batch at 500 operations
BATCH_LIMIT = 400


def _cast(value: str):
    """'true'/'false' -> bool, numeric strings -> number, everything else trimmed text."""
    value = value.strip()
    lowered = value.lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    if not NUMBER_PATTERN.match(value):
        return value
    return float(value) if '.' in value else int(value)


def read_csv_records(raw: bytes) -> list:
    """Parse CSV bytes into a list of auto-cast row dicts (header row excluded)."""
    try:
        frame = pd.read_csv(io.BytesIO(raw), dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.EmptyDataError:
        raise AppError('CSV file is empty', 400, 'EMPTY_FILE')
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise AppError(f'Could not parse CSV: {e}', 400, 'INVALID_CSV')
    frame.columns = [str(c).strip() for c in frame.columns]
    return [{k: _cast(v) for k, v in row.items()} for row in frame.to_dict(orient='records')]


def _split(value) -> list:
    if value in ('', None):
        return []
    return [part.strip() for part in str(value).split('|') if part.strip()]


def _json_field(record: dict, key: str) -> dict:
    value = record.get(key)
    if value in ('', None):
        return {}
    try:
        return json.loads(value) if isinstance(value, str) else value
    except json.JSONDecodeError:
        raise ValueError(f'{key} must be valid JSON')


def build_product(record: dict, category_id: str, uid: str = None) -> dict:
    """Product document for one CSV row; raises ValueError when the row is malformed."""
    missing = [c for c in REQUIRED_COLUMNS if record.get(c) in ('', None)]
    if missing:
        raise ValueError('Missing required fields: name, category_slug, basePrice')
    if isinstance(record['basePrice'], bool) or not isinstance(record['basePrice'], (int, float)):
        raise ValueError('basePrice must be a number')
    if record['basePrice'] < 0:
        raise ValueError('basePrice must not be negative')

    stock = record.get('stockQty')
    is_active = record.get('isActive')
    now = dbhelper._now()
    return {
        'name': str(record['name']),
        'category': category_id,
        'description': str(record.get('description') or ''),
        'basePrice': record['basePrice'],
        'stockQty': stock if isinstance(stock, (int, float)) and not isinstance(stock, bool) else 0,
        'productionTime': str(record.get('productionTime') or ''),
        'isActive': is_active if isinstance(is_active, bool) else True,
        'isFeatured': False,
        'tags': _split(record.get('tags')),
        'features': _split(record.get('features')),
        'images': _split(record.get('images')),
        'cost': _json_field(record, 'cost'),
        'specifications': _json_field(record, 'specifications'),
        'stats': dbhelper._empty_stats(),
        'createdAt': now,
        'updatedAt': now,
        'createdBy': uid,
    }


def import_products_csv(raw: bytes, user: dict = None) -> dict:
    """Import products row by row; bad rows are reported, good rows are written."""
    if not raw or not raw.strip():
        raise AppError('CSV file is required', 400, 'MISSING_FILE')
    records = read_csv_records(raw)

    dbhelper._require_db()
    db = dbhelper.db
    categories = {}
    for doc in db.collection('categories').get():
        slug = (doc.to_dict() or {}).get('slug')
        if slug:
            categories[slug] = doc.id

    results = {'success': 0, 'failed': 0, 'errors': []}
    batch = db.batch()
    pending = 0
    uid = user.get('uid') if user else None

    for index, record in enumerate(records):
        try:
            slug = str(record.get('category_slug') or '')
            category_id = categories.get(slug)
            new_category = None
            if slug and not category_id:
                new_category = db.collection('categories').document()
                category_id = new_category.id

            product = build_product(record, category_id, uid)

            if new_category is not None:
                now = dbhelper._now()
                batch.set(new_category, {
                    'name': record.get('category_name') or slug,
                    'slug': slug,
                    'createdAt': now,
                    'updatedAt': now,
                })
                categories[slug] = category_id
                pending += 1
                logger.info('Auto-creating category: %s', slug)

            batch.set(db.collection('products').document(), product)
            pending += 1
            results['success'] += 1
        except ValueError as e:
            results['failed'] += 1
            results['errors'].append({'row': index + 2, 'data': record, 'error': str(e)})

        if pending >= BATCH_LIMIT:
            batch.commit()
            batch = db.batch()
            pending = 0

    if pending:
        batch.commit()

    logger.info('CSV import completed: %d success, %d failed by %s',
                results['success'], results['failed'], dbhelper._actor(user))
    return results
