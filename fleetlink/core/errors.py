"""Error taxonomy for the relay.

None of these is fatal to the process: each one is caught at the seam that
owns it (connection loop, scenario player, delivery) and logged there.
"""


class FleetLinkError(Exception):
    """Base class for relay errors."""


class DecodeError(FleetLinkError):
    """A wire record could not be turned into a Packet."""


class UndeliverableError(FleetLinkError):
    """The addressed device is not currently registered."""

    def __init__(self, receiver_id: str):
        super().__init__(f"device not connected: {receiver_id}")
        self.receiver_id = receiver_id


class ScenarioLoadError(FleetLinkError):
    """The scenario file is missing or could not be parsed."""


class ChannelClosed(FleetLinkError):
    """The peer closed the connection or the socket failed."""
