# app/services/storage.py
import os
import logging
from typing import Optional
from uuid import uuid4

logger = logging.getLogger(__name__)

STORAGE_BASE = os.getenv("STORAGE_BASE", "./storage")


def save_upload(kind: str, system_id: int, filename: str, data: bytes) -> str:
    """Write an uploaded file under STORAGE_BASE/<kind>/<system_id>/ with a random name."""
    ext = os.path.splitext(filename or "")[1]
    target_dir = os.path.join(STORAGE_BASE, kind, str(system_id))
    os.makedirs(target_dir, exist_ok=True)
    path = os.path.join(target_dir, f"{uuid4().hex}{ext}")
    with open(path, "wb") as f:
        f.write(data)
    return path


def read_upload(path: Optional[str]) -> Optional[bytes]:
    if not path or not os.path.exists(path):
        return None
    with open(path, "rb") as f:
        return f.read()


def remove_upload(path: Optional[str]) -> None:
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.warning("Stored file already gone: %s", path)
