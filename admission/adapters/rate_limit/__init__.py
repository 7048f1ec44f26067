"""Rate limit record stores.

The limiter talks to an abstract record store so a single process can start
with the in-memory store and a multi-instance deployment can move to a shared
store without changing the limiter or the API layer.
"""
