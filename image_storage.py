# image_storage.py (v1.5)
import io
import logging
import secrets
import string
import time
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, ImageOps, UnidentifiedImageError

from inventory_error_handler import handle_api_error, not_authenticated, PERMISSION, PROCESSING

RANDOM_ALPHABET = string.ascii_lowercase + string.digits


def create_r2_client(account_id, access_key_id, secret_access_key):
    """S3 client pointed at the account's R2 endpoint."""
    return boto3.client(
        's3',
        endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        region_name="auto",
        config=Config(
            signature_version="s3v4",
            retries={'max_attempts': 3, 'mode': 'standard'},
        ),
    )


def build_object_key(user_id, timestamp_ms=None, suffix=None):
    timestamp_ms = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
    suffix = suffix or "".join(secrets.choice(RANDOM_ALPHABET) for _ in range(7))
    return f"products/{user_id}/{timestamp_ms}-{suffix}.webp"


def normalize_image(content: bytes, size: int = 800, quality: int = 80) -> bytes:
    """
    Center-crops to a square, resizes to size x size and re-encodes as WebP.
    Raises ValueError if the bytes are not a readable image.
    """
    try:
        image = Image.open(io.BytesIO(content))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Unreadable image: {e}") from e
    image = ImageOps.exif_transpose(image)
    has_alpha = image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info)
    image = image.convert("RGBA" if has_alpha else "RGB")
    square = ImageOps.fit(image, (size, size), method=Image.LANCZOS, centering=(0.5, 0.5))
    out = io.BytesIO()
    square.save(out, format="WEBP", quality=quality, method=6)
    return out.getvalue()


class ImageStorage:
    def __init__(self, s3_client, bucket_name, public_url, image_settings):
        self.s3 = s3_client
        self.bucket_name = bucket_name
        self.public_url = (public_url or "").rstrip("/")
        self.allowed_types = image_settings["allowed_types"]
        self.max_file_size = image_settings["max_file_size"]
        self.output_size = image_settings["output_size"]
        self.webp_quality = image_settings["webp_quality"]

    def public_url_for(self, key):
        return f"{self.public_url}/{key}"

    def get_key_from_url(self, image_url):
        if self.public_url and image_url.startswith(f"{self.public_url}/"):
            return image_url[len(self.public_url) + 1:]
        return urlparse(image_url).path.lstrip("/")

    def validate_upload(self, file_data):
        """Returns an error message, or None when the upload is acceptable."""
        content = file_data.get("file_content") if file_data else None
        if not content:
            return "No file was provided."
        if file_data.get("content_type") not in self.allowed_types:
            return "Format not allowed. Only JPG, PNG and WebP."
        if len(content) > self.max_file_size:
            size_mb = len(content) / 1024 / 1024
            limit_mb = self.max_file_size / 1024 / 1024
            return f"Image too large ({size_mb:.2f}MB). Maximum {limit_mb:.0f}MB."
        return None

    def upload_product_image(self, user_id, file_data):
        if not user_id:
            return not_authenticated()
        error = self.validate_upload(file_data)
        if error:
            return {"success": False, "message": error, "error_kind": PROCESSING}
        logging.info(f"Received image {file_data.get('file_name')} ({file_data.get('content_type')}, {len(file_data['file_content']) / 1024:.2f} KB)")
        try:
            body = normalize_image(file_data["file_content"], self.output_size, self.webp_quality)
        except ValueError as e:
            logging.warning(f"Rejected upload {file_data.get('file_name')}: {e}")
            return {"success": False, "message": "The file is not a valid image.", "error_kind": PROCESSING}

        key = build_object_key(user_id)
        logging.info(f"Uploading product image to {key}")
        try:
            self.s3.put_object(Bucket=self.bucket_name, Key=key, Body=body, ContentType="image/webp")
        except (BotoCoreError, ClientError) as e:
            return handle_api_error(e, "image upload")
        url = self.public_url_for(key)
        logging.info(f"Image uploaded: {url}")
        return {"success": True, "url": url}

    def delete_product_image(self, user_id, image_url):
        if not user_id:
            return not_authenticated()
        if not image_url:
            return {"success": False, "message": "No image URL was provided.", "error_kind": PROCESSING}
        key = self.get_key_from_url(image_url)
        if not key.startswith(f"products/{user_id}/"):
            logging.warning(f"User {user_id} attempted to delete foreign image: {key}")
            return {"success": False, "message": "You do not have permission to delete this image.", "error_kind": PERMISSION}
        try:
            self.s3.delete_object(Bucket=self.bucket_name, Key=key)
        except (BotoCoreError, ClientError) as e:
            return handle_api_error(e, "image delete")
        logging.info(f"Image deleted: {key}")
        return {"success": True}
