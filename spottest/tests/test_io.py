from unittest.mock import MagicMock, patch
import io

import numpy as np
from PIL import Image
import pytest
import requests

from spottest.src.reagent_colors.errors import DecodeError, ValidationError
from spottest.src.reagent_colors.io import (
    decode_image,
    read_image_bytes,
    save_marker_overlay,
    validate_upload,
)
from spottest.src.reagent_colors.models import DetectedColor


def _png_bytes(color, size=(10, 10), mode="RGB"):
    img = Image.new(mode, size, color=color)
    img_byte_arr = io.BytesIO()
    img.save(img_byte_arr, format="PNG")
    return img_byte_arr.getvalue()


def test_read_image_bytes_url_success():
    img_bytes = _png_bytes("red")

    with patch("requests.get") as mock_get:
        mock_response = MagicMock()
        mock_response.content = img_bytes
        mock_response.headers = {"Content-Type": "image/png; charset=binary"}
        mock_response.raise_for_status.return_value = None
        mock_get.return_value = mock_response

        url = "http://example.com/image.png"
        data, mime_type = read_image_bytes(url)

        mock_get.assert_called_once_with(url, timeout=10)
        assert data == img_bytes
        assert mime_type == "image/png"


def test_read_image_bytes_url_failure():
    with patch("requests.get") as mock_get:
        mock_response = MagicMock()
        mock_response.raise_for_status.side_effect = requests.exceptions.HTTPError("404 Client Error")
        mock_get.return_value = mock_response

        with pytest.raises(requests.exceptions.HTTPError):
            read_image_bytes("http://example.com/nonexistent.png")


def test_read_image_bytes_local_file(tmp_path):
    img_path = tmp_path / "test_image.jpg"
    Image.new("RGB", (10, 10), color="blue").save(img_path)

    data, mime_type = read_image_bytes(str(img_path))

    assert data == img_path.read_bytes()
    assert mime_type == "image/jpeg"


def test_decode_image_returns_rgba_pixels():
    decoded = decode_image(_png_bytes((0, 0, 255, 100), size=(12, 7), mode="RGBA"))

    assert (decoded.width, decoded.height) == (12, 7)
    assert decoded.format == "PNG"
    assert decoded.pixels.shape == (7, 12, 4)
    assert np.all(decoded.pixels[0, 0] == [0, 0, 255, 100])


def test_decode_image_rejects_garbage():
    with pytest.raises(DecodeError):
        decode_image(b"definitely not an image")


def test_decode_image_reports_out_of_memory_as_decode_error():
    def exhausted(image):
        raise MemoryError()

    with patch("PIL.ImageOps.exif_transpose", side_effect=exhausted):
        with pytest.raises(DecodeError, match="not enough memory"):
            decode_image(_png_bytes("red"))


def test_validate_upload_sniffs_missing_mime_type():
    assert validate_upload(_png_bytes("red"), None) == "image/png"


def test_validate_upload_rejects_non_image_mime():
    with pytest.raises(ValidationError):
        validate_upload(_png_bytes("red"), "application/pdf")


def test_save_marker_overlay_draws_at_centroid(tmp_path):
    decoded = decode_image(_png_bytes("white", size=(40, 40)))
    marker = DetectedColor(
        color_key=(240, 0, 0),
        rgb=(255, 0, 0),
        hex="#FF0000",
        centroid=(20, 20),
        occurrence_count=10,
        confidence=95,
    )
    out_path = tmp_path / "overlay" / "markers.png"

    save_marker_overlay(decoded, [marker], out_path, radius=6)

    with Image.open(out_path) as saved:
        assert saved.size == (40, 40)
        assert saved.getpixel((20, 20)) == (255, 0, 0)
        assert saved.getpixel((0, 0)) == (255, 255, 255)
