import hashlib
import hmac
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi import HTTPException

import config
import images


@pytest.fixture
def imagekit(monkeypatch):
    monkeypatch.setattr(config, "IMAGEKIT_URL_ENDPOINT", "https://ik.imagekit.io/boutique")
    monkeypatch.setattr(config, "IMAGEKIT_PUBLIC_KEY", "public_key")
    monkeypatch.setattr(config, "IMAGEKIT_PRIVATE_KEY", "private_key")


def _without_query(url):
    return url.split("?")[0]


def test_relative_path(imagekit):
    url = images.build_image_url("/products/red.jpg", **images.DEFAULT_PRODUCT_IMAGE)
    assert _without_query(url) == "https://ik.imagekit.io/boutique/tr:w-480,q-70,f-auto/products/red.jpg"


def test_absolute_url_on_endpoint(imagekit):
    url = images.build_image_url("https://ik.imagekit.io/boutique/red.jpg?v=2", width=160)
    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://ik.imagekit.io/boutique/red.jpg"
    query = parse_qs(parts.query)
    assert query["v"] == ["2"]
    assert query["tr"] == ["w-160"]


def test_foreign_url_is_untouched(imagekit):
    assert images.build_image_url("https://cdn.example.com/red.jpg", width=160) == "https://cdn.example.com/red.jpg"
    assert images.build_image_url(None) is None


def test_placeholder(imagekit):
    url = images.build_placeholder_url("red.jpg")
    assert _without_query(url) == "https://ik.imagekit.io/boutique/tr:w-32,q-15,f-webp,bl-40/red.jpg"


def test_without_credentials():
    assert images.get_imagekit() is None
    assert images.build_image_url("/products/red.jpg", width=480) == "/products/red.jpg"
    assert images.build_placeholder_url("/products/red.jpg") is None


def test_upload_auth_parameters(imagekit):
    params = images.upload_auth_parameters(token="tok", expire=1767225600)
    expected = hmac.new(b"private_key", b"tok1767225600", hashlib.sha1).hexdigest()
    assert params["token"] == "tok"
    assert int(params["expire"]) == 1767225600
    assert params["signature"] == expected
    assert params["public_key"] == "public_key"


def test_upload_auth_generates_token(imagekit):
    params = images.upload_auth_parameters()
    assert params["token"]
    assert int(params["expire"]) > 0


def test_upload_auth_requires_keys():
    with pytest.raises(HTTPException) as exc:
        images.upload_auth_parameters()
    assert exc.value.status_code == 500


def test_upload_auth_endpoint_is_admin_only(client, user, admin, auth, imagekit):
    assert client.get("/api/images/auth", headers=auth(user[1])).status_code == 403
    res = client.get("/api/images/auth", headers=auth(admin[1]))
    assert res.status_code == 200
    assert set(res.json()) == {"token", "expire", "signature", "public_key", "url_endpoint"}
