from .client import StorageAdminClient

__all__ = ["StorageAdminClient"]
