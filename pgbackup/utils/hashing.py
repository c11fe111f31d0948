"""
Hashing helpers for backup archives.
"""

import base64
import hashlib


CHUNK_SIZE = 1024 * 1024


def create_md5(file_path: str) -> str:
    """
    Compute the MD5 digest of a file without loading it into memory.

    Args:
        file_path: Path to the file to hash

    Returns:
        Hex-encoded MD5 digest
    """
    md5 = hashlib.md5()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            md5.update(chunk)
    return md5.hexdigest()


def md5_to_base64(hex_digest: str) -> str:
    """Re-encode a hex MD5 digest the way S3 expects it in Content-MD5."""
    return base64.b64encode(bytes.fromhex(hex_digest)).decode('ascii')


def content_md5(data: bytes) -> str:
    """Base64 Content-MD5 value for an in-memory chunk."""
    return base64.b64encode(hashlib.md5(data).digest()).decode('ascii')
