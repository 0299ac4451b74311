"""
Message relay: an outbox service that dispatches messages to a webhook on a
fixed schedule and lists recently sent messages from a Redis cache backed by
the database.
"""

__version__ = "0.1.0"
