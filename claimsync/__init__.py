"""
ClaimSync - offline-first synchronization core for field claim capture

Provides:
- Local record store and durable operation queue (SQLite)
- Sync engine that drains the queue against a remote backend
- Realtime bridge that merges server-pushed changes (last-write-wins)
- Data orchestrator: the single local write path
- FastAPI router exposing sync status to the UI layer
"""

__version__ = "1.5.0"
