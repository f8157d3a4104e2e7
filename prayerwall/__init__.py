"""
Prayer wall backend.

Accepts prayer-request submissions and live comments, persists them in a
durable database (or an in-memory fallback when the database is unreachable
at startup), and pushes every change to connected viewers over a WebSocket.
"""
