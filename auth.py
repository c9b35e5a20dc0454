import os

import streamlit as st
import toml
from streamlit.errors import StreamlitAPIException

from infrastructure.identity.supabase_auth_provider import SupabaseAuthProvider
from infrastructure.repositories.sqlite_local_storage import SQLiteLocalStorage
from infrastructure.repositories.supabase_role_repository import SupabaseRoleRepository
from use_cases.role_resolver import (
    ROLE_LOOKUP_BACKOFF_SECONDS,
    ROLE_LOOKUP_RETRIES,
    ROLE_LOOKUP_TIMEOUT_SECONDS,
    RoleResolver,
)
from use_cases.watchdog import AUTH_WATCHDOG_SECONDS


class ConfigurationError(Exception):
    pass


LOCAL_STORAGE_DB = "local_storage.db"
SECRETS_FILE = ".streamlit/secrets.toml"


def get_secret(key):
    try:
        return st.secrets.get(key)
    except (FileNotFoundError, StreamlitAPIException):
        return None


def load_secrets_file(path=SECRETS_FILE):
    """For scripts running outside Streamlit."""
    try:
        return toml.load(path)
    except (FileNotFoundError, toml.TomlDecodeError):
        return {}


def get_setting(key, default=None):
    value = get_secret(key) or os.getenv(key)
    return value if value not in (None, "") else default


def get_required_setting(key):
    value = get_setting(key)
    if value is None:
        raise ConfigurationError(f"{key} is not configured (secrets.toml or environment)")
    return value


def get_float_setting(key, default):
    raw = get_setting(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")


_local_storage = None


def get_local_storage() -> SQLiteLocalStorage:
    global _local_storage
    db_path = get_setting("LOCAL_STORAGE_DB", LOCAL_STORAGE_DB)
    if _local_storage is None or _local_storage.db_path != db_path:
        _local_storage = SQLiteLocalStorage(db_path)
        _local_storage.init_db()
    return _local_storage


def build_identity_provider(visitor_id=None) -> SupabaseAuthProvider:
    """One provider per visitor: its persisted credential lives under a visitor-scoped key."""
    return SupabaseAuthProvider(
        get_required_setting("SUPABASE_URL"),
        get_required_setting("SUPABASE_ANON_KEY"),
        get_local_storage(),
        visitor_id=visitor_id,
    )


def build_role_repo(provider: SupabaseAuthProvider) -> SupabaseRoleRepository:
    return SupabaseRoleRepository(
        provider.base_url,
        provider.api_key,
        token_source=lambda: provider.current_access_token,
    )


def build_role_resolver(role_repo) -> RoleResolver:
    return RoleResolver(
        role_repo,
        attempt_timeout=get_float_setting("ROLE_LOOKUP_TIMEOUT_SECONDS", ROLE_LOOKUP_TIMEOUT_SECONDS),
        max_retries=int(get_float_setting("ROLE_LOOKUP_RETRIES", ROLE_LOOKUP_RETRIES)),
        retry_delay=get_float_setting("ROLE_LOOKUP_BACKOFF_SECONDS", ROLE_LOOKUP_BACKOFF_SECONDS),
    )


def get_watchdog_timeout() -> float:
    return get_float_setting("AUTH_WATCHDOG_SECONDS", AUTH_WATCHDOG_SECONDS)


def reset_singletons():
    global _local_storage
    _local_storage = None
