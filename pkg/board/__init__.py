# Project board: lane tracking, drag reconciliation, and backend persistence
#
# Components:
#   schema.py        - Data model (WorkItem, Lane, Transition, DragGesture)
#   errors.py        - StoreError taxonomy and user-facing messages
#   status_map.py    - Default status codes <-> display names
#   state.py         - BoardState: in-memory board with subscribers
#   coordinator.py   - Drag gesture -> Transition decision
#   reconciler.py    - Optimistic apply, remote confirm, rollback
#   notifications.py - Toast-style notification side channel
#   store.py         - SQLite project store (and the store contract)
#   rest_store.py    - Managed-backend REST project store
#   config.py        - YAML + environment configuration
