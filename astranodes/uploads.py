import logging
import os
import secrets
import time

from flask import current_app
from werkzeug.utils import secure_filename

from .errors import ApiError

log = logging.getLogger(__name__)

IMAGE_TYPES = {
    'image/jpeg': '.jpg',
    'image/png': '.png',
    'image/webp': '.webp',
}


def upload_dir(*parts):
    path = os.path.join(current_app.config['UPLOAD_DIR'], *parts)
    os.makedirs(path, exist_ok=True)
    return path


def file_size(storage):
    stream = storage.stream
    pos = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(pos)
    return size


def check_image(storage, max_bytes=5 * 1024 * 1024):
    """Return the extension for an accepted image upload, raising 400 otherwise."""
    ext = IMAGE_TYPES.get(storage.mimetype)
    if not ext:
        raise ApiError('Only JPG, PNG or WEBP images are allowed', 400)
    if file_size(storage) > max_bytes:
        raise ApiError(f'File too large (max {max_bytes // (1024 * 1024)} MB)', 400)
    return ext


def save_screenshot(storage):
    ext = check_image(storage)
    name = secrets.token_hex(16) + ext
    path = os.path.join(upload_dir(), name)
    storage.save(path)
    return path


def save_ticket_image(storage):
    """Stored under tickets/; returns the path relative to the upload root."""
    ext = check_image(storage)
    name = secure_filename(f'ticket-{int(time.time() * 1000)}-{secrets.randbelow(10 ** 9)}{ext}')
    storage.save(os.path.join(upload_dir('tickets'), name))
    return f'tickets/{name}'


def save_site_asset(storage, kind, allowed_ext=None, max_bytes=8 * 1024 * 1024):
    """Stored as <kind><ext>, replacing any previous asset of that kind."""
    ext = os.path.splitext(secure_filename(storage.filename or ''))[1].lower()
    if allowed_ext is not None and ext not in allowed_ext:
        raise ApiError(f"Only {', '.join(sorted(allowed_ext))} files are allowed", 400)
    if allowed_ext is None and not storage.mimetype.startswith('image/'):
        raise ApiError('Only image files are allowed', 400)
    if file_size(storage) > max_bytes:
        raise ApiError('File too large (max 8 MB)', 400)
    folder = upload_dir()
    for old in os.listdir(folder):
        if os.path.splitext(old)[0] == kind:
            os.remove(os.path.join(folder, old))
    name = f'{kind}{ext or ".png"}'
    storage.save(os.path.join(folder, name))
    return f'/uploads/{name}'


def remove_file(path):
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError as e:
            log.warning('Could not delete %s: %s', path, e)
