"""
Profile photo storage on the local filesystem.

The only contract is "file in, stable URL or None out". Anything that goes
wrong degrades to "no photo" so the surrounding form still saves.
"""

import logging
import os
import time
from typing import Optional

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from portal.common import config

log = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


def _allowed(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def save_photo(file: Optional[FileStorage]) -> Optional[str]:
    """
    Store an uploaded photo and return its public URL.

    Args:
        file (FileStorage, optional): The uploaded file from request.files.

    Returns:
        str | None: URL under PHOTO_URL_PREFIX, or None when nothing was
        uploaded, uploads are disabled, the file type is not an image, or
        the write failed.
    """
    if file is None or not file.filename:
        return None

    if not config.UPLOAD_FOLDER:
        log.info("No UPLOAD_FOLDER set; skipping photo upload.")
        return None

    safe_name = secure_filename(file.filename)
    if not safe_name or not _allowed(safe_name):
        log.warning(f"Rejected photo upload with unsupported name '{file.filename}'")
        return None

    stored_name = f"{int(time.time() * 1000)}_{safe_name}"
    try:
        os.makedirs(config.UPLOAD_FOLDER, exist_ok=True)
        file.save(os.path.join(config.UPLOAD_FOLDER, stored_name))
    except OSError as e:
        log.warning(f"Photo upload failed: {e}")
        return None

    return f"{config.PHOTO_URL_PREFIX}/{stored_name}"
