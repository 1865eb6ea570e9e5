"""Snapshot storage: capture, catalog, retention, restore and the lock.

Modules:
    - snapshot_store: Capture tracked files into a new snapshot
    - catalog: List and load complete snapshots
    - retention: Keep only the newest N snapshots
    - restore: Restore a snapshot behind a pre-restore safety snapshot
    - lock: Single-instance lock shared with provisioning
    - exceptions: Error taxonomy
"""
