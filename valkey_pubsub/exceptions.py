"""
Exception hierarchy for the pub/sub, cache and lock layer.

Errors raised by the valkey client itself are not wrapped; they propagate
unchanged from the operation that issued the command.
"""


class PubSubError(Exception):
    """Base class for errors raised by this package."""
    pass


class StoreConnectionError(PubSubError):
    """Store connections could not be established or are not open."""
    pass


class SerializationError(PubSubError):
    """A value could not be converted to or from its JSON wire form."""
    pass


class MessageDecodeError(SerializationError):
    """An inbound channel message was not a JSON array."""

    def __init__(self, channel: str, data, cause: Exception = None):
        self.channel = channel
        self.data = data
        super().__init__(f"Undecodable message on channel {channel!r}: {cause}")


class CacheDecodeError(SerializationError):
    """A cached value was not valid JSON."""

    def __init__(self, key: str, cause: Exception = None):
        self.key = key
        super().__init__(f"Undecodable cache value for key {key!r}: {cause}")


class LockTimeoutError(PubSubError):
    """A lock was not acquired within the caller's wait bound."""

    def __init__(self, name: str, waited: float):
        self.name = name
        self.waited = waited
        super().__init__(f"Timed out acquiring lock {name!r} after {waited:.3f}s")
