"""Select the state store backend from configuration."""

from models.config_models import CredentialsConfig
from storage.base import PullRequestStore


def build_store(credentials: CredentialsConfig) -> PullRequestStore:
    """
    Create the configured store.

    Args:
        credentials: Validated credentials (store_backend decides the backend)

    Returns:
        SupabaseStore or InMemoryStore
    """
    if credentials.store_backend == "memory":
        from storage.memory_store import InMemoryStore
        return InMemoryStore()

    from storage.supabase_client import SupabaseStore
    return SupabaseStore(credentials.supabase_url, credentials.supabase_key)
