"""
Domain layer - core value types and exceptions.

Free of any backend client library so adapters and callers can share them.
"""
