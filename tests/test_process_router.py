import pytest
from unittest.mock import patch

import config
from routers import process as process_router
from services.errors import EncodeFailure

from conftest import make_broken_png, make_image_bytes, open_png

CORS_EXPECTED = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "POST, OPTIONS",
    "access-control-allow-headers": "Content-Type",
}


def post_image(client, data=None, content=None, filename="photo.png"):
    if content is None:
        content = make_image_bytes(size=(64, 48))
    files = {"image": (filename, content, "application/octet-stream")}
    return client.post("/process", data=data or {}, files=files)


def assert_cors_headers(response):
    for header, value in CORS_EXPECTED.items():
        assert response.headers.get(header) == value

# --- Success paths ---

def test_process_returns_png(client):
    response = post_image(client, data={"width": "200", "height": "100"})
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert int(response.headers["content-length"]) == len(response.content)
    assert open_png(response.content).size == (200, 100)
    assert_cors_headers(response)

def test_process_known_fixture_dimensions(client):
    response = post_image(client, data={"width": "800", "height": "600", "aspect": "16:9"})
    assert response.status_code == 200
    assert open_png(response.content).size == (800, 450)

def test_process_defaults_when_no_fields(client):
    response = post_image(client)
    assert response.status_code == 200
    assert open_png(response.content).size == (2048, 1536)

def test_process_oversized_request_is_clamped(client):
    response = post_image(client, data={"width": "4096", "height": "4096"})
    assert response.status_code == 200
    assert open_png(response.content).size == (2048, 2048)

def test_process_original_aspect(client):
    content = make_image_bytes(size=(300, 100))
    response = post_image(client, content=content, data={"width": "900", "height": "900", "aspect": "original"})
    assert open_png(response.content).size == (900, 300)

def test_process_fit_mode_exact_size(client):
    content = make_image_bytes(size=(30, 200))
    response = post_image(client, content=content, data={"width": "320", "height": "180", "resize": "fit"})
    assert response.status_code == 200
    assert open_png(response.content).size == (320, 180)

def test_process_fill_colour_corners(client):
    content = make_image_bytes(size=(40, 20), color=(255, 255, 255))
    response = post_image(client, content=content, data={
        "width": "300", "height": "200", "contrast": "0",
        "fillColourR": "12", "fillColourG": "34", "fillColourB": "56",
    })
    assert response.status_code == 200
    img = open_png(response.content)
    assert img.size == (300, 200)
    for corner in [(0, 0), (299, 0), (0, 199), (299, 199)]:
        assert img.getpixel(corner) == (12, 34, 56, 255)

def test_process_jpeg_upload(client):
    response = post_image(client, content=make_image_bytes(fmt="JPEG"), filename="photo.jpg",
                          data={"width": "50", "height": "50"})
    assert response.status_code == 200
    assert open_png(response.content).size == (50, 50)

def test_process_unknown_aspect_falls_through(client):
    response = post_image(client, data={"width": "120", "height": "80", "aspect": "bogus"})
    assert response.status_code == 200
    assert open_png(response.content).size == (120, 80)

# --- OPTIONS / other methods ---

def test_options_returns_cors_headers_and_empty_body(client):
    response = client.options("/process")
    assert response.status_code == 200
    assert response.content == b""
    assert_cors_headers(response)

@pytest.mark.parametrize("method", ["GET", "PUT", "DELETE", "PATCH", "TRACE", "PROPFIND"])
def test_other_methods_not_allowed(client, method):
    response = client.request(method, "/process")
    assert response.status_code == 405
    assert response.text == f"POST only: {method} is not supported"
    assert response.headers["allow"] == "POST, OPTIONS"
    assert response.headers["content-type"].startswith("text/plain")
    assert_cors_headers(response)

def test_405_elsewhere_keeps_default_body(client):
    response = client.post("/api/health/live")
    assert response.status_code == 405
    assert response.json() == {"detail": "Method Not Allowed"}

# --- Client errors ---

def test_missing_image_field(client):
    response = client.post("/process", data={"width": "100"}, files={"other": ("a.txt", b"x", "text/plain")})
    assert response.status_code == 400
    assert "Missing" in response.text
    assert response.headers["content-type"].startswith("text/plain")
    assert_cors_headers(response)

def test_image_sent_as_plain_field(client):
    response = client.post("/process", data={"image": "not a file"}, files={"other": ("a.txt", b"x", "text/plain")})
    assert response.status_code == 400
    assert "Missing" in response.text

def test_non_image_bytes(client):
    response = post_image(client, content=b"this is not an image", filename="notes.txt")
    assert response.status_code == 400
    assert "Invalid" in response.text

def test_broken_png_chunk_is_invalid_image(client):
    response = post_image(client, content=make_broken_png())
    assert response.status_code == 400
    assert response.text.startswith("Invalid image")

def test_huge_dimension_falls_back_to_default(client):
    response = post_image(client, data={"width": "2049", "height": "1" + "0" * 400})
    assert response.status_code == 200
    assert open_png(response.content).size == (2048, 1535)

def test_non_multipart_body(client):
    response = client.post("/process", json={"width": 100})
    assert response.status_code == 400
    assert response.text.startswith("Could not parse form")

def test_malformed_multipart_body(client):
    response = client.post(
        "/process",
        content=b"--abc\r\n\r\nvalue\r\n--abc--\r\n",
        headers={"Content-Type": "multipart/form-data"},
    )
    assert response.status_code == 400
    assert response.text.startswith("Could not parse form")

def test_resolves_to_empty_image(client):
    response = post_image(client, data={"width": "1", "height": "1", "aspect": "16:9"})
    assert response.status_code == 400
    assert response.text.startswith("Invalid parameter")

def test_file_over_upload_limit(client, monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_SIZE_BYTES", 10)
    response = post_image(client)
    assert response.status_code == 413
    assert response.text.startswith("Could not parse form: file too large")

def test_chunked_upload_over_limit(client, monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_SIZE_BYTES", 10)
    boundary = "chunkedboundary"
    body = (
        f"--{boundary}\r\n"
        'Content-Disposition: form-data; name="image"; filename="photo.png"\r\n'
        "Content-Type: application/octet-stream\r\n\r\n"
    ).encode() + make_image_bytes(size=(64, 48)) + f"\r\n--{boundary}--\r\n".encode()

    def body_chunks():
        # A generator body is sent chunked, without a Content-Length header
        for start in range(0, len(body), 64):
            yield body[start:start + 64]

    response = client.post(
        "/process",
        content=body_chunks(),
        headers={"Content-Type": f"multipart/form-data; boundary={boundary}"},
    )
    assert response.status_code == 413
    assert response.text.startswith("Could not parse form: file too large")
    assert "over 10 bytes" in response.text

def test_content_length_over_upload_limit(client):
    response = client.post(
        "/process",
        content=b"",
        headers={
            "Content-Type": "multipart/form-data; boundary=abc",
            "Content-Length": str(config.MAX_UPLOAD_SIZE_BYTES * 2),
        },
    )
    assert response.status_code == 413
    assert "request body too large" in response.text

def test_strict_mode_rejects_unknown_aspect(client, monkeypatch):
    monkeypatch.setattr(config, "STRICT_PARAMS", True)
    response = post_image(client, data={"aspect": "bogus"})
    assert response.status_code == 400
    assert response.text.startswith("Invalid parameter: aspect=")

# --- Server errors ---

def test_encode_failure_is_500(client):
    with patch.object(process_router, "process_image", side_effect=EncodeFailure("boom")):
        response = post_image(client)
    assert response.status_code == 500
    assert response.text == "Failed to encode image: boom"

# --- Cross-cutting headers ---

def test_request_id_and_security_headers(client):
    response = post_image(client, data={"width": "10", "height": "10"})
    assert len(response.headers["x-request-id"]) == 32
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["x-frame-options"] == "DENY"
