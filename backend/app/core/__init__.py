"""
Core application modules.
Contains configuration, storage clients, errors and observability.
"""
from .config import Settings, get_settings, load_settings
from .database import get_supabase_client
from .errors import CoordinatorError

__all__ = ["Settings", "get_settings", "load_settings", "get_supabase_client", "CoordinatorError"]
