"""Error taxonomy shared by the server-side chain and the client."""


class ChainmuxError(Exception):
    """Base class for errors raised by chainmux."""


class RouteError(ChainmuxError):
    """Failure inside a middleware or route handler.

    The dispatcher wraps non-exception values passed to ``next(err)`` in this
    type; handlers may also raise it directly.
    """


class HTTPError(ChainmuxError):
    """Error carrying the HTTP status the dispatcher should respond with."""

    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.status = status


class AbortError(ChainmuxError):
    """Client request exceeded its timeout or was explicitly aborted."""

    def __init__(self, message: str = "The operation was aborted") -> None:
        super().__init__(message)


class TransportError(ChainmuxError):
    """Connection-level failure (DNS, refused connection, TLS, protocol)."""


class BodyUsedError(TypeError):
    """A response body was read more than once."""

    def __init__(self, message: str = "Body has already been consumed") -> None:
        super().__init__(message)
