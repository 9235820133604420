"""
Vehicle image storage

Images live in the GridFS bucket "vehicle_images" and are served back by the
API under /api/images/<name>. Names are "<epoch ms>-<sanitized original>" so
two uploads of the same file never collide.
"""

import logging
import re
import time
from typing import BinaryIO, Callable, List, Optional, Union
from urllib.parse import quote, unquote

import gridfs
from gridfs.errors import NoFile
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import DataError

logger = logging.getLogger(__name__)

BUCKET = "vehicle_images"
IMAGE_ROUTE = "/api/images/"

_UNSAFE = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(filename: str) -> str:
    return _UNSAFE.sub("_", filename or "image")


def unique_filename(filename: str, now_ms: int) -> str:
    return f"{now_ms}-{sanitize_filename(filename)}"


def public_url(base_url: str, name: str) -> str:
    return f"{base_url.rstrip('/')}{IMAGE_ROUTE}{quote(name)}"


def name_from_url(base_url: str, url: str) -> Optional[str]:
    """None for URLs this store did not hand out (stock photos etc.)."""
    prefix = f"{base_url.rstrip('/')}{IMAGE_ROUTE}"
    if not url or not url.startswith(prefix):
        return None
    return unquote(url[len(prefix):]) or None


class ImageStore:
    def __init__(self, db: Database, public_base_url: str,
                 clock_ms: Callable[[], int] = lambda: int(time.time() * 1000), bucket=None):
        self.bucket = bucket if bucket is not None else gridfs.GridFSBucket(db, bucket_name=BUCKET)
        self.public_base_url = public_base_url.rstrip("/")
        self.clock_ms = clock_ms

    def public_url(self, name: str) -> str:
        return public_url(self.public_base_url, name)

    def upload(self, data: Union[bytes, BinaryIO], filename: str,
               content_type: Optional[str] = None) -> str:
        name = unique_filename(filename, self.clock_ms())
        try:
            self.bucket.upload_from_stream(name, data, metadata={"contentType": content_type})
        except PyMongoError as e:
            raise DataError("upload image", e)
        logger.info("Stored image %s", name)
        return self.public_url(name)

    def list_urls(self, limit: int = 100) -> List[str]:
        try:
            files = list(self.bucket.find({}, limit=limit, sort=[("uploadDate", -1)]))
        except PyMongoError as e:
            raise DataError("list images", e)
        return [self.public_url(f.filename) for f in files]

    def open(self, name: str):
        """Readable GridOut for the image, or None if there is no such file."""
        try:
            return self.bucket.open_download_stream_by_name(name)
        except NoFile:
            return None
        except PyMongoError as e:
            raise DataError("fetch image", e)

    def delete(self, url: str) -> bool:
        name = name_from_url(self.public_base_url, url)
        if name is None:
            logger.debug("Not deleting external image %s", url)
            return False
        try:
            files = list(self.bucket.find({"filename": name}))
            for f in files:
                self.bucket.delete(f._id)
        except (PyMongoError, NoFile):
            # Deletion is best effort; a leftover blob is harmless
            logger.exception("Failed to delete image %s", name)
            return False
        return bool(files)
