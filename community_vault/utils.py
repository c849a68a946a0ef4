import hashlib
import re
import time

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "json": "application/json",
    "mp4": "video/mp4",
    "mp3": "audio/mpeg",
}


def calculate_hash(data: bytes) -> str:
    """Returns the SHA-256 hex digest of raw object bytes"""
    sha256 = hashlib.sha256()
    # Hash in 8kb slices so large uploads are not copied again
    view = memoryview(data)
    for start in range(0, len(view), 8192):
        sha256.update(view[start:start + 8192])
    return sha256.hexdigest()


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def build_object_key(user_id: str, filename: str) -> str:
    return f"{user_id}/{int(time.time() * 1000)}-{sanitize_filename(filename)}"


def content_type_for(key: str) -> str:
    ext = key.rsplit(".", 1)[-1].lower() if "." in key else ""
    return CONTENT_TYPES.get(ext, "application/octet-stream")
