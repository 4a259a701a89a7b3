"""
Listing photo storage.

Uploads are re-encoded to JPEG and kept in an S3 bucket under ``products/``
when AWS_S3_BUCKET is set, otherwise in the app's UPLOAD_FOLDER.

A listing's photos are written as one batch: every upload is decoded before
anything is stored, and if a write fails part way the photos already written
for that batch are deleted again.
"""
import os
import time
import uuid
import logging
from io import BytesIO

from PIL import Image, ImageOps

from constants import IMAGE_QUALITY, MAX_IMAGE_DIMENSION

logger = logging.getLogger(__name__)

S3_PREFIX = "products/"


class PhotoError(Exception):
    """An upload could not be decoded or stored."""


def to_listing_jpeg(file_obj) -> bytes:
    """Decode an upload and return upright JPEG bytes, longest side capped."""
    try:
        img = ImageOps.exif_transpose(Image.open(file_obj)).convert("RGBA")
    except (OSError, Image.DecompressionBombError) as e:
        raise PhotoError(f"cannot decode image: {e}") from e

    # Transparent areas become white, not black
    flat = Image.new("RGB", img.size, (255, 255, 255))
    flat.paste(img, mask=img.getchannel("A"))
    flat.thumbnail((MAX_IMAGE_DIMENSION, MAX_IMAGE_DIMENSION), Image.Resampling.LANCZOS)

    out = BytesIO()
    flat.save(out, "JPEG", quality=IMAGE_QUALITY, optimize=True)
    return out.getvalue()


def product_photo_key(product_id) -> str:
    return f"product_{product_id}_{int(time.time())}_{uuid.uuid4().hex[:8]}.jpg"


class LocalStorage:
    """Photos in a folder on disk, served by the /uploads route."""

    def __init__(self, upload_folder: str):
        self.upload_folder = upload_folder
        os.makedirs(upload_folder, exist_ok=True)

    def is_s3(self) -> bool:
        return False

    def _path(self, key):
        return os.path.join(self.upload_folder, key)

    def write(self, key: str, jpeg: bytes):
        with open(self._path(key), "wb") as fh:
            fh.write(jpeg)

    def delete_photo(self, key: str) -> bool:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Could not delete local photo {key}: {e}", exc_info=True)
            return False
        return True

    def get_photo_url(self, key: str) -> str:
        from flask import url_for
        return url_for("uploaded_file", filename=key)

    def exists(self, key: str) -> bool:
        return os.path.isfile(self._path(key))


class S3Storage:
    """Photos in an S3 bucket, optionally fronted by a CDN."""

    def __init__(self, bucket: str, region: str, cdn_url: str = None):
        import boto3
        self.bucket = bucket
        self.region = region
        self.base_url = (cdn_url.rstrip("/") if cdn_url
                         else f"https://{bucket}.s3.{region}.amazonaws.com")
        self.client = boto3.client("s3", region_name=region)

    def is_s3(self) -> bool:
        return True

    def write(self, key: str, jpeg: bytes):
        self.client.put_object(
            Bucket=self.bucket,
            Key=S3_PREFIX + key,
            Body=jpeg,
            ContentType="image/jpeg",
            CacheControl="max-age=3600",
        )

    def delete_photo(self, key: str) -> bool:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=S3_PREFIX + key)
        except self.client.exceptions.ClientError as e:
            logger.error(f"Could not delete S3 photo {key}: {e}", exc_info=True)
            return False
        return True

    def get_photo_url(self, key: str) -> str:
        return f"{self.base_url}/{S3_PREFIX}{key}"

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=S3_PREFIX + key)
        except self.client.exceptions.ClientError:
            return False
        return True


# Set by init_storage when the app loads
_storage = None


def init_storage(app):
    """Pick S3 when AWS_S3_BUCKET is set, else the app's UPLOAD_FOLDER."""
    global _storage
    bucket = os.environ.get("AWS_S3_BUCKET")
    if bucket:
        region = os.environ.get("AWS_S3_REGION", "ap-south-1")
        _storage = S3Storage(bucket, region, cdn_url=os.environ.get("AWS_S3_CDN_URL"))
        logger.info(f"Photo storage: S3 bucket {bucket} ({region})")
    else:
        _storage = LocalStorage(app.config.get("UPLOAD_FOLDER", "static/uploads"))
        logger.info(f"Photo storage: local folder {_storage.upload_folder}")
    return _storage


def get_storage_instance():
    return _storage


def delete_photos(keys):
    """Delete each key, returning how many were removed."""
    store = get_storage_instance()
    return sum(1 for key in keys if store.delete_photo(key))


def save_product_photos(product_id, files):
    """
    Store a batch of uploads for one listing and return their keys in upload order.

    Raises PhotoError if any upload cannot be decoded (nothing is written) or
    cannot be stored (the batch's earlier writes are deleted first).
    """
    store = get_storage_instance()
    encoded = [to_listing_jpeg(f) for f in files]

    written = []
    for jpeg in encoded:
        key = product_photo_key(product_id)
        try:
            store.write(key, jpeg)
        except Exception as e:
            logger.error(f"Storing photo {key} for product {product_id} failed: {e}", exc_info=True)
            delete_photos(written)
            raise PhotoError(f"cannot store image: {e}") from e
        written.append(key)
    return written


def replace_product_photos(product_id, old_keys, files):
    """Store files as the listing's new gallery, then drop old_keys. Old photos survive a failed batch."""
    keys = save_product_photos(product_id, files)
    delete_photos(old_keys)
    logger.info(f"Product {product_id} gallery replaced: {len(old_keys)} old, {len(keys)} new photos")
    return keys
