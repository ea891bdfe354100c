"""Rate limiter singleton for upload-heavy import routes."""
import hashlib

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def operator_key(request: Request) -> str:
    """Bucket requests per operator bearer token, else per client address."""
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        digest = hashlib.sha256(auth[7:].strip().encode()).hexdigest()[:16]
        return f"operator:{digest}"
    return get_remote_address(request)


limiter = Limiter(key_func=operator_key)
