"""Custom error types for phantogram."""


class PhantogramError(Exception):
    """Base class for all phantogram errors."""


class DisconnectionError(PhantogramError):
    """Raised when a remote function reference can no longer reach its owner."""

    reason: str

    def __init__(self, reason: str) -> None:
        """Initialize a disconnection error.

        :param reason: Human-readable reason reported by the remote subject.
        """
        self.reason = reason
        super().__init__(
            f"Function belongs to a simulated remote object which has been disconnected: {reason}"
        )


class InvalidPropertyError(PhantogramError):
    """Raised when a namespace proxy is asked for a key it cannot address."""


class PhantogramProtocolError(PhantogramError):
    """Raised for malformed messages on the realm-to-realm channel."""


class RemoteCallError(PhantogramError):
    """Raised when a remote function rejects a call."""

    remote_type_name: str
    remote_message: str
    remote_traceback: str

    def __init__(
        self,
        remote_type_name: str,
        remote_message: str,
        remote_traceback: str,
    ) -> None:
        """Initialize a remote call error wrapper.

        :param remote_type_name: Original remote exception type name.
        :param remote_message: Original remote exception message.
        :param remote_traceback: Original remote traceback text.
        """
        self.remote_type_name = remote_type_name
        self.remote_message = remote_message
        self.remote_traceback = remote_traceback
        formatted: str = f"Remote side raised {remote_type_name}: {remote_message}"
        if remote_traceback != "":
            formatted = formatted + f"\nRemote traceback:\n{remote_traceback}"
        super().__init__(formatted)
