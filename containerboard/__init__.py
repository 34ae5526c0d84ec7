# Container-rental order dashboard: record store, derived views, and remote mutations
#
# Components:
#   schema.py          - Data model (OrderRecord, OrderStatus, ActionType, wire mapping)
#   errors.py          - Error taxonomy shared by every layer
#   config.py          - YAML-backed runtime configuration
#   client.py          - Resilient remote client (rate-limit backoff, in-flight counter)
#   store.py           - Canonical id -> record mapping
#   viewstate.py       - Search/filter/sort/page state
#   views.py           - Table, kanban, inventory, autocomplete, counters
#   events.py          - Event bus and notification surface
#   mutations.py       - Mutation coordinator and edit sessions
#   transitions.py     - Kanban drag status transitions
#   telegram_bridge.py - Optional Telegram sink for notifications
#   dashboard.py       - Session facade wiring everything together

__version__ = "0.3.0"
