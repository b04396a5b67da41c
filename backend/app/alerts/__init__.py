"""
alerts — Geo-targeted alert lifecycle.

Sub-modules:
    models        — ORM entities: alerts, recipients, read-set, fan-out rows
    queries       — shared filters (expiry, addressing, read state)
    store         — create / get / deactivate / purge
    distribution  — recipient resolution and fan-out
    tracker       — read acknowledgments, unread counts, agency views
    reaper        — background purge of expired alerts
"""
