import io
import unittest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError, EndpointConnectionError
from PIL import Image

from app_config import DEFAULT_SETTINGS
from image_storage import ImageStorage, build_object_key, normalize_image

PUBLIC_URL = "https://images.example.com"


def png_bytes(width=1200, height=600, color="red"):
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class TestImageHelpers(unittest.TestCase):
    def test_object_key_layout(self):
        self.assertEqual(build_object_key("user-1", 1700000000000, "abc1234"), "products/user-1/1700000000000-abc1234.webp")

    def test_random_suffix(self):
        key = build_object_key("user-1", 1)
        suffix = key.rsplit("-", 1)[1][:-len(".webp")]
        self.assertEqual(len(suffix), 7)
        self.assertTrue(suffix.isalnum())

    def test_normalize_crops_to_square_webp(self):
        output = normalize_image(png_bytes(), size=800, quality=80)
        image = Image.open(io.BytesIO(output))
        self.assertEqual(image.format, "WEBP")
        self.assertEqual(image.size, (800, 800))

    def test_normalize_rejects_garbage(self):
        with self.assertRaises(ValueError):
            normalize_image(b"definitely not an image")


class TestImageStorage(unittest.TestCase):
    def setUp(self):
        self.s3 = MagicMock()
        self.storage = ImageStorage(self.s3, "inventory", PUBLIC_URL + "/", DEFAULT_SETTINGS["images"])

    def file_data(self, content=None, content_type="image/png"):
        return {"file_name": "coffee.png", "file_content": png_bytes() if content is None else content, "content_type": content_type}

    def test_upload_puts_webp_under_user_prefix(self):
        result = self.storage.upload_product_image("user-1", self.file_data())

        self.assertTrue(result["success"])
        self.assertTrue(result["url"].startswith(f"{PUBLIC_URL}/products/user-1/"))
        kwargs = self.s3.put_object.call_args[1]
        self.assertEqual(kwargs["Bucket"], "inventory")
        self.assertEqual(kwargs["ContentType"], "image/webp")
        self.assertTrue(kwargs["Key"].endswith(".webp"))

    def test_upload_validation(self):
        self.assertEqual(self.storage.upload_product_image("user-1", None)["message"], "No file was provided.")
        result = self.storage.upload_product_image("user-1", self.file_data(content_type="image/gif"))
        self.assertEqual(result["message"], "Format not allowed. Only JPG, PNG and WebP.")
        result = self.storage.upload_product_image("user-1", self.file_data(content=b"x" * (5 * 1024 * 1024 + 1)))
        self.assertTrue(result["message"].startswith("Image too large"))
        self.s3.put_object.assert_not_called()

    def test_upload_rejects_unreadable_image(self):
        result = self.storage.upload_product_image("user-1", self.file_data(content=b"not a png"))
        self.assertFalse(result["success"])
        self.s3.put_object.assert_not_called()

    def test_upload_requires_user(self):
        self.assertEqual(self.storage.upload_product_image(None, self.file_data())["error_kind"], "auth")

    def test_upload_storage_failure(self):
        self.s3.put_object.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        result = self.storage.upload_product_image("user-1", self.file_data())
        self.assertFalse(result["success"])
        self.assertEqual(result["error_kind"], "permission")

    def test_upload_offline(self):
        self.s3.put_object.side_effect = EndpointConnectionError(endpoint_url="https://r2")
        result = self.storage.upload_product_image("user-1", self.file_data())
        self.assertEqual(result["error_kind"], "network")

    def test_delete_own_image(self):
        result = self.storage.delete_product_image("user-1", f"{PUBLIC_URL}/products/user-1/1-abc.webp")
        self.assertTrue(result["success"])
        self.s3.delete_object.assert_called_once_with(Bucket="inventory", Key="products/user-1/1-abc.webp")

    def test_delete_foreign_image_is_refused(self):
        result = self.storage.delete_product_image("user-1", f"{PUBLIC_URL}/products/user-2/1-abc.webp")
        self.assertFalse(result["success"])
        self.assertEqual(result["error_kind"], "permission")
        self.s3.delete_object.assert_not_called()

    def test_key_from_other_host(self):
        self.assertEqual(self.storage.get_key_from_url("https://cdn.other.com/products/u/1.webp"), "products/u/1.webp")


if __name__ == '__main__':
    unittest.main()
