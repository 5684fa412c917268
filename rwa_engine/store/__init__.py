"""Row store backends."""
from .supabase import SupabaseStore

__all__ = ["SupabaseStore"]
