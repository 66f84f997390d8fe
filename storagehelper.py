import logging
import time
from datetime import timedelta
from urllib.parse import quote

from firebase_admin import storage
from werkzeug.utils import secure_filename

import config
import dbhelper
from errors import AppError

logger = logging.getLogger(__name__)


def get_bucket():
    """Default Cloud Storage bucket of the Firebase app."""
    dbhelper.init_firebase()
    return storage.bucket(config.FIREBASE_STORAGE_BUCKET or None)


def _object_name(filename: str, folder: str = 'products') -> str:
    safe = secure_filename(filename or '') or 'image'
    return f'{folder}/{int(time.time() * 1000)}_{safe}'


def _check_image(content_type: str, size: int):
    if not (content_type or '').startswith('image/'):
        raise AppError('Only image files are allowed', 400, 'FILE_UPLOAD_ERROR')
    if size > config.MAX_IMAGE_SIZE:
        raise AppError('File too large. Maximum size is 5MB', 400, 'FILE_UPLOAD_ERROR')


def upload_image(file_storage, folder: str = 'products') -> dict:
    """Upload a werkzeug FileStorage image and return its public download URL."""
    data = file_storage.read()
    content_type = file_storage.mimetype or file_storage.content_type
    _check_image(content_type, len(data))

    name = _object_name(file_storage.filename, folder)
    blob = get_bucket().blob(name)
    blob.upload_from_string(data, content_type=content_type)
    blob.make_public()
    logger.info('Image uploaded: %s (%d bytes)', name, len(data))
    return {'fileName': name, 'url': blob.public_url, 'contentType': content_type, 'size': len(data)}


def delete_image(file_name: str) -> bool:
    blob = get_bucket().blob(file_name)
    if not blob.exists():
        raise AppError('File not found', 404, 'FILE_NOT_FOUND')
    blob.delete()
    logger.info('Image deleted: %s', file_name)
    return True


def signed_upload_url(filename: str, content_type: str) -> dict:
    """v4 signed PUT URL (15 minutes) for uploading straight from the browser."""
    if not (content_type or '').startswith('image/'):
        raise AppError('Only image files are allowed', 400, 'FILE_UPLOAD_ERROR')
    bucket = get_bucket()
    name = _object_name(filename)
    blob = bucket.blob(name)
    url = blob.generate_signed_url(
        version='v4',
        expiration=timedelta(minutes=15),
        method='PUT',
        content_type=content_type,
    )
    public_url = f'https://storage.googleapis.com/{bucket.name}/{quote(name)}'
    return {'uploadUrl': url, 'fileName': name, 'publicUrl': public_url}
