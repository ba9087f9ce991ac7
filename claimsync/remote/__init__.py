"""
Remote Package

The RemoteBackend protocol and the Supabase-style implementation.
"""

from claimsync.remote.protocol import RemoteBackend
from claimsync.remote.realtime import RealtimeClient, normalize_message
from claimsync.remote.supabase import SupabaseBackend

__all__ = [
    "RemoteBackend",
    "RealtimeClient",
    "normalize_message",
    "SupabaseBackend",
]
