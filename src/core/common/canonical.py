import hashlib


def hash_bytes(data: bytes) -> str:
    return f"sha256:{sha256_hex(data)}"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
