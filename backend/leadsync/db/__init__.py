"""Database clients for leadsync."""

from leadsync.db.supabase import create_supabase_client

__all__ = ["create_supabase_client"]
