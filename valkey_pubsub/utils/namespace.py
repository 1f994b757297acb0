"""
Channel and key namespacing.

Every channel and key this package touches lives under one prefix so
several applications can share a store without colliding.
"""

DELIMITER = "."


class ChannelNamespacer:
    """
    Maps local event, cache and lock names to external store names.

    Example:
        ns = ChannelNamespacer("shop")
        ns.to_external("order.created")   # "shop.order.created"
        ns.to_local("shop.order.created") # "order.created"
        ns.lock_key("checkout")           # "shop.lock.checkout"
    """

    def __init__(self, prefix: str):
        if not prefix:
            raise ValueError("Namespace prefix must be a non-empty string")
        self._prefix = prefix
        self._head = f"{prefix}{DELIMITER}"

    @property
    def prefix(self) -> str:
        return self._prefix

    def to_external(self, name: str) -> str:
        """Qualify a local name with the prefix."""
        return f"{self._head}{name}"

    def to_local(self, external: str) -> str:
        """
        Recover the local name from an external one.

        The name is split on every "<prefix>." occurrence and everything
        after the first segment is joined back with the same separator,
        so names that themselves embed "<prefix>." survive the round trip.
        """
        parts = external.split(self._head)
        parts.pop(0)
        return self._head.join(parts)

    def lock_key(self, name: str) -> str:
        return self.to_external(f"lock{DELIMITER}{name}")

    def pattern(self, pattern: str) -> str:
        # Wildcards are passed to SCAN MATCH untouched
        return self.to_external(pattern)

    def __repr__(self) -> str:
        return f"ChannelNamespacer(prefix={self._prefix!r})"
