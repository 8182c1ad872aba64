"""
Errors raised while talking to the ledger node gateway.

All of them are network errors: the caller may retry the request.
"""

from typing import Optional, Union

from ..exceptions import NetworkError


class MarshalError(NetworkError):
    """A request frame could not be serialized."""

    def __init__(self, original_error: Union[Exception, str]):
        super().__init__(f"could not encode gateway frame: {original_error}", module="socket")


class UnmarshalError(NetworkError):
    """A response frame or result body could not be parsed."""

    def __init__(self, original_error: Union[Exception, str]):
        super().__init__(f"could not parse gateway frame: {original_error}", module="socket")


class SocketTimeoutError(NetworkError):
    def __init__(self, request_type: str = "request", timeout: Optional[float] = None):
        suffix = f" after {timeout}s" if timeout else ""
        super().__init__(f"{request_type} got no answer from the gateway{suffix}", module="socket")


class SocketConnectionError(NetworkError):
    """The gateway socket is missing, refused the connection or dropped it."""

    def __init__(self, message: str = "gateway connection failed"):
        super().__init__(message, module="socket")


class InvalidSocketResponseError(NetworkError):
    """A response frame lacked the fields its method promises."""

    def __init__(self, method: str, body: Optional[str] = None):
        message = f"{method} answered without a usable result"
        if body:
            message = f"{message}: {body}"
        super().__init__(message, module="socket")


class NodeRequestError(NetworkError):
    """The node gateway answered a request with an error frame."""

    def __init__(self, method: str, code: int, msg: str):
        self.node_code = code
        super().__init__(f"{method} failed on node (code {code}): {msg}", module="node")
