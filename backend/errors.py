"""Error taxonomy for the navigation session and its outbound clients."""


class NavigationError(Exception):
    """Base class for every error the session surfaces or absorbs."""

    kind = "navigation_error"


class ProviderError(NavigationError):
    """The external service could not be reached or answered with an HTTP error."""

    kind = "provider_error"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ResolutionError(NavigationError):
    """A place query produced no coordinate."""

    kind = "resolution_error"


class DiscoveryError(NavigationError):
    """The discovery payload for a coordinate could not be parsed."""

    kind = "discovery_error"


class RouteError(NavigationError):
    """No path between origin and destination, or the routing call failed."""

    kind = "route_error"


class SpeechError(NavigationError):
    """Speech synthesis failed. Always absorbed by the announcer."""

    kind = "speech_error"


class StreamError(NavigationError):
    """Device location is unavailable or permission was denied."""

    kind = "stream_error"


class UnknownTargetError(NavigationError):
    """The requested target id is not part of the current discovery set."""

    kind = "unknown_target"
