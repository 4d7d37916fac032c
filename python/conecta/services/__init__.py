"""Business logic services.

Services are called by route handlers and orchestrate database operations.
Stores (connection_store, message_store) own tables and invariants; the
service modules own transactions.
"""
