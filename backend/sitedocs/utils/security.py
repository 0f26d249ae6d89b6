import hashlib
import hmac
import time


def sign_path(path: str, secret: str, expires_at: int) -> str:
    message = f"{path}:{expires_at}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_path_signature(path: str, secret: str, expires_at: int, signature: str, now: float | None = None) -> bool:
    if (now if now is not None else time.time()) > expires_at:
        return False
    expected = sign_path(path, secret, expires_at)
    return hmac.compare_digest(expected, signature)
