"""
Image Upload Domain

Watches a folder for new images and delivers them to Discord:
- watcher.py - Filesystem events, debounce and stability checks
- history.py - Content-addressed ledger of delivered files
- uploader.py - Pending queue, batching, retry and reconciliation
- delivery/ - Discord webhook and bot transports
- pipeline.py - Wiring and start/stop lifecycle
"""

__all__ = ["channel", "delivery", "history", "pipeline", "retry", "uploader", "watcher"]
