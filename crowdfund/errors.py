"""Error taxonomy shared by the gateway, chain adapter and service layers."""


class CrowdfundError(Exception):
    """Base exception for crowdfund errors."""

    retryable = False

    def user_message(self) -> str:
        """Text suitable for showing to an end user."""
        return str(self) or self.__class__.__name__


class Unauthenticated(CrowdfundError):
    """Raised when a call needs a session and none is present."""

    def user_message(self) -> str:
        return "Please sign in to continue."


class Unauthorized(CrowdfundError):
    """Raised by row-level checks when the session lacks permission."""

    def user_message(self) -> str:
        return "You do not have permission to do that."


class NotFound(CrowdfundError):
    """Raised when a mutation targets a row that does not exist or is not visible.

    Plain lookups never raise this; they return None.
    """


class InvalidInput(CrowdfundError):
    """Raised for malformed addresses, amounts or missing fields."""


class AlreadyFinalized(CrowdfundError):
    """Raised when finalizing a campaign that is already finalized."""

    def user_message(self) -> str:
        return "This campaign has already been finalized."


class OperationNotImplemented(CrowdfundError):
    """Raised by operations whose contract exists but has no settlement logic."""

    def user_message(self) -> str:
        return "Refunds are not available yet."


class UpstreamFailure(CrowdfundError):
    """Raised when the derivation service or balance gateway fails or times out."""

    retryable = True

    def user_message(self) -> str:
        return "A network service is temporarily unavailable. Please try again."


def describe_error(exc: BaseException) -> str:
    """Map an exception to the message shown to users.

    Args:
        exc: Any exception raised by a service call

    Returns:
        User-visible message
    """
    if isinstance(exc, CrowdfundError):
        return exc.user_message()
    return "Something went wrong. Please try again."
