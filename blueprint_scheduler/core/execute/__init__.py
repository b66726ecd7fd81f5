"""Layered execution of persisted plans.

The executor owns no business logic of its own: callers supply a worker
that performs one blueprint and raises on failure. Locks, layer barriers and
checkpoints are handled here.
"""
