"""
商品文件访问：判断预览类型（pdf / image / video / external），
私有存储中的文件按需生成 1 小时有效的签名地址。
"""

import logging
import os
import re
from urllib.parse import unquote, urlparse

from dotenv import load_dotenv

from app.services.datastore_client import SIGNED_URL_EXPIRES, DataStoreClient, DataStoreError

load_dotenv()

logger = logging.getLogger(__name__)

PRODUCT_FILES_BUCKET = os.getenv("PRODUCT_FILES_BUCKET", "product-files")

FILE_FIELDS = ("file_url", "thumbnail_url", "video_url")

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".bmp"}
VIDEO_EXTENSIONS = {".mp4", ".webm", ".mov", ".m4v", ".ogg", ".ogv"}

# 无扩展名时按地址中的标记判断
_KIND_MARKERS = (
    ("pdf", ("/pdf/", "application/pdf")),
    ("image", ("/images/", "/image/", "/thumbnails/")),
    ("video", ("/videos/", "/video/", "youtube.com", "youtu.be", "vimeo.com")),
)

_STORAGE_OBJECT = re.compile(r"/storage/v1/object/(?:(public|authenticated|sign)/)?([^/]+)/(.+)$")


class FileAccessError(Exception):
    """文件访问失败（缺少文件地址或签名失败）。"""
    pass


def detect_preview_kind(url: str) -> str:
    """根据扩展名和地址标记返回预览类型：pdf / image / video / external。"""
    path = urlparse(url).path.lower()
    ext = os.path.splitext(path)[1]
    if ext == ".pdf":
        return "pdf"
    if ext in IMAGE_EXTENSIONS:
        return "image"
    if ext in VIDEO_EXTENSIONS:
        return "video"

    lowered = url.lower()
    for kind, markers in _KIND_MARKERS:
        if any(m in lowered for m in markers):
            return kind
    return "external"


def parse_storage_path(url: str, default_bucket: str = PRODUCT_FILES_BUCKET) -> tuple[str, str] | None:
    """
    解析私有存储引用，返回 (bucket, path)；公开地址或外部链接返回 None。

    支持：
    - https://<project>/storage/v1/object/<bucket>/<path>
    - https://<project>/storage/v1/object/authenticated/<bucket>/<path>
    - 裸路径 <path>（存放在默认 bucket 中）
    """
    parsed = urlparse(url)
    if parsed.scheme in ("http", "https"):
        match = _STORAGE_OBJECT.search(parsed.path)
        if not match:
            return None
        access, bucket, path = match.groups()
        if access in ("public", "sign"):
            return None
        return bucket, unquote(path)
    if parsed.scheme:
        return None
    return default_bucket, url.lstrip("/")


async def resolve_file(
    store: DataStoreClient, url: str | None, default_bucket: str = PRODUCT_FILES_BUCKET
) -> dict:
    """
    生成文件预览描述：{url, kind, signed, expires_in}。

    Raises:
        FileAccessError: 文件地址为空或签名地址生成失败。
    """
    if not url:
        raise FileAccessError("该商品没有可访问的文件")

    kind = detect_preview_kind(url)
    storage_ref = parse_storage_path(url, default_bucket)
    if storage_ref is None:
        return {"url": url, "kind": kind, "signed": False, "expires_in": None}

    bucket, path = storage_ref
    try:
        signed_url = await store.create_signed_url(bucket, path, SIGNED_URL_EXPIRES)
    except DataStoreError as e:
        logger.error("生成签名地址失败 (%s/%s): %s", bucket, path, e)
        raise FileAccessError(f"无法生成文件访问地址: {e}") from e

    return {"url": signed_url, "kind": kind, "signed": True, "expires_in": SIGNED_URL_EXPIRES}
