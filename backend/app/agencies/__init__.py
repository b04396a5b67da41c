"""
agencies — Agency directory: identity, location and proximity lookups.

Sub-modules:
    models     — ORM entity and agency type enum
    directory  — registration, location updates, radius queries
"""
