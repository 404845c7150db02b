from shodh import config
from shodh.backend.base import AuthEvent, AuthStateChannel, Backend, BackendError, Subscription

__all__ = ["AuthEvent", "AuthStateChannel", "Backend", "BackendError", "Subscription", "create_backend"]


def create_backend(kind: str = None) -> Backend:
    kind = kind or config.BACKEND
    if kind == "local":
        from shodh.backend.local import LocalBackend
        return LocalBackend()
    if kind == "remote":
        from shodh.backend.remote import RemoteBackend
        return RemoteBackend()
    raise ValueError(f"Unknown backend {kind!r}, expected 'local' or 'remote'")
