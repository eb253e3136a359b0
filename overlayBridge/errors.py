"""Exceptions raised by the overlay bridge."""


class ConfigError(Exception):
    """Bridge configuration missing or malformed."""


class LinkNotReadyError(ConnectionError):
    """Send/publish attempted on a link that is not in the ready state."""

    def __init__(self, linkName: str, state: str):
        super().__init__(f"{linkName} link not ready (state={state})")
        self.linkName = linkName
        self.state = state
