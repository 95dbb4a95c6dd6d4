# chunkget/utils.py
"""
Shared helper functions for formatting, validation, and cache naming.
"""
import hashlib
import os
from urllib.parse import urlparse

DEFAULT_FILENAME = "download.dat"
# Bytes kept from the file name, well under the usual 255 byte name limit.
MAX_KEY_NAME = 100


def format_bytes(size: int) -> str:
    """Converts bytes into a human-readable format (KB, MB, GB)."""
    if not isinstance(size, (int, float)):
        return "0 B"
    power = 1024
    n = 0
    power_labels = {0: '', 1: 'K', 2: 'M', 3: 'G', 4: 'T'}
    while size > power and n < len(power_labels) - 1:
        size /= power
        n += 1
    return f"{size:.2f} {power_labels[n]}B"


def is_valid_url(url: str) -> bool:
    """Checks that a string is an http(s) URL with a host."""
    try:
        result = urlparse(url)
    except ValueError:
        return False
    return result.scheme in ("http", "https") and bool(result.netloc)


def get_default_filename(url: str) -> str:
    """Extracts a filename from a URL path."""
    try:
        path = urlparse(url).path
    except ValueError:
        return DEFAULT_FILENAME
    filename = os.path.basename(path)
    return filename if filename else DEFAULT_FILENAME


def cache_key(url: str) -> str:
    """Directory name for the chunk cache of one resource."""
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
    name = get_default_filename(url).encode("utf-8")[:MAX_KEY_NAME].decode("utf-8", "ignore")
    return f"{name}-{digest}"
