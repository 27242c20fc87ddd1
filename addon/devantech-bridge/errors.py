"""Exceptions raised by the Devantech bridge core."""


class BridgeError(Exception):
    """Base class for bridge errors."""


class UnknownDevice(BridgeError):
    """A module references a device id that is not configured."""

    def __init__(self, device_id: str, ip_address: str | None = None):
        self.device_id = device_id
        self.ip_address = ip_address
        where = f" (module {ip_address})" if ip_address else ""
        super().__init__(f"unknown device '{device_id}'{where}")


class UnresolvedCommand(BridgeError):
    """No ON/OFF command template matches a channel address."""

    def __init__(self, device_id: str, address: int, direction: str):
        self.device_id = device_id
        self.address = address
        self.direction = direction
        super().__init__(
            f"device '{device_id}' has no {direction} command for address {address}"
        )


class MalformedStatus(BridgeError):
    """A status report does not match the module's channel layout."""


class UnauthorizedOrigin(BridgeError):
    """An inbound connection came from an address outside the allow-list."""


class DisconnectedCommandPath(BridgeError):
    """A module has no command connection."""
