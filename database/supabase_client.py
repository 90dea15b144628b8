import threading

from supabase import create_client, Client

from app.core.config import settings

# One client per thread: pooled HTTP/2 connections must not cross threads
_thread_local = threading.local()


def get_supabase_client() -> Client:
    """Get a thread-local Supabase client.

    Repository calls run both on the event loop thread and in worker threads
    (asyncio.to_thread from the generation and polling loops), so each thread
    gets its own client instead of sharing a connection pool.
    """
    if not settings.supabase_url or not settings.supabase_secret_key:
        raise RuntimeError(
            "Supabase credentials not configured. "
            "Set SUPABASE_URL and SUPABASE_SECRET_KEY environment variables."
        )

    if not hasattr(_thread_local, "client"):
        _thread_local.client = create_client(
            settings.supabase_url,
            settings.supabase_secret_key,
        )
    return _thread_local.client


def reset_supabase_client() -> None:
    """Drop the thread-local client so the next call opens a fresh connection."""
    if hasattr(_thread_local, "client"):
        delattr(_thread_local, "client")
