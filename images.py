"""
ImageKit helpers: CDN transformation URLs and client-upload authentication.

Both go through the ImageKit SDK. Without credentials, image sources are
served as stored and upload auth is refused.
"""
from typing import Optional

from fastapi import HTTPException
from imagekitio import ImageKit

import config

DEFAULT_PRODUCT_IMAGE = {"width": 480, "quality": 70, "format": "auto"}
PRODUCT_DETAIL_IMAGE = {"width": 1024, "quality": 75, "format": "auto"}
AVATAR_IMAGE = {"width": 160, "quality": 70, "format": "auto"}
PLACEHOLDER_IMAGE = {"width": 32, "quality": 15, "format": "webp", "blur": 40}


def get_imagekit() -> Optional[ImageKit]:
    if not (config.IMAGEKIT_URL_ENDPOINT and config.IMAGEKIT_PUBLIC_KEY and config.IMAGEKIT_PRIVATE_KEY):
        return None
    return ImageKit(
        private_key=config.IMAGEKIT_PRIVATE_KEY,
        public_key=config.IMAGEKIT_PUBLIC_KEY,
        url_endpoint=config.IMAGEKIT_URL_ENDPOINT,
    )


def build_image_url(
    src: Optional[str],
    width: Optional[int] = None,
    quality: Optional[int] = None,
    format: Optional[str] = None,
    blur: Optional[int] = None,
) -> Optional[str]:
    """Return a CDN URL for `src` with the given transformation applied.

    Relative paths are resolved against the configured endpoint. Absolute URLs
    on the endpoint get a `tr` query parameter; foreign URLs are returned
    unchanged, as is everything when ImageKit is not configured.
    """
    if not src:
        return None
    imagekit = get_imagekit()
    if imagekit is None:
        return src

    transformation = {key: value for key, value in
                      (("width", width), ("quality", quality), ("format", format), ("blur", blur)) if value}
    options = {}
    if transformation:
        options["transformation"] = [transformation]

    if src.startswith("http://") or src.startswith("https://"):
        if not src.startswith(config.IMAGEKIT_URL_ENDPOINT.rstrip("/")) or not transformation:
            return src
        options["src"] = src
    else:
        options["path"] = "/" + src.lstrip("/")
        options["transformation_position"] = "path"
    return imagekit.url(options)


def build_placeholder_url(src: Optional[str]) -> Optional[str]:
    if get_imagekit() is None:
        return None
    return build_image_url(src, **PLACEHOLDER_IMAGE)


def upload_auth_parameters(token: str = "", expire: int = 0) -> dict:
    """Token, expiry and signature a browser needs to upload straight to ImageKit."""
    imagekit = get_imagekit()
    if imagekit is None:
        raise HTTPException(status_code=500, detail="Image storage is not configured")
    params = imagekit.get_authentication_parameters(token, expire)
    return {
        "token": params["token"],
        "expire": params["expire"],
        "signature": params["signature"],
        "public_key": config.IMAGEKIT_PUBLIC_KEY,
        "url_endpoint": config.IMAGEKIT_URL_ENDPOINT,
    }
