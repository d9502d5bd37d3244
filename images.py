"""
Externally hosted images (Cloudinary)

Catalog items store full image URLs; deleting the hosted asset needs the
Cloudinary public id, which is the URL path after the folder segment without
its extension, prefixed with the folder.
"""

import logging
import random
from abc import ABC, abstractmethod
import time
from typing import Optional

import cloudinary
import cloudinary.uploader

from config import Settings

logger = logging.getLogger(__name__)


class ImageStore(ABC):
    @abstractmethod
    def upload(self, data: bytes, folder: str, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    @abstractmethod
    def destroy(self, public_id: str):
        raise NotImplementedError

    @staticmethod
    def public_id_from_url(url: str, folder: str) -> Optional[str]:
        parts = url.split("/")
        if folder not in parts:
            return None
        index = parts.index(folder)
        if len(parts) <= index + 1:
            return None
        path = "/".join(parts[index + 1:]).split(".")[0]
        if not path:
            return None
        return f"{folder}/{path}"


class CloudinaryImageStore(ImageStore):
    def __init__(self, settings: Settings):
        cloudinary.config(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            secure=True,
        )

    def upload(self, data: bytes, folder: str, content_type: Optional[str] = None) -> str:
        public_id = f"{int(time.time() * 1000)}-{random.randint(0, 10 ** 9)}"
        result = cloudinary.uploader.upload(
            data,
            folder=folder,
            public_id=public_id,
            resource_type="auto",
            quality="auto:eco",
            fetch_format="auto",
        )
        url = result["secure_url"]
        logger.info("Uploaded image to Cloudinary: %s", url)
        return url

    def destroy(self, public_id: str):
        cloudinary.uploader.destroy(public_id)
        logger.info("Deleted Cloudinary image: %s", public_id)
