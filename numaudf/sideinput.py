"""User-defined side inputs: the message, the retriever interface and the service.

Also holds the pieces every service in the package shares: the default
message size, the shutdown signal and the opening handshake of a stream.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

logger = logging.getLogger(__name__)

UDS = "unix"
ADDRESS = "/var/run/numaflow/sideinput.sock"
DIR_PATH = "/var/numaflow/side-inputs"
DEFAULT_MAX_MESSAGE_SIZE = 1024 * 1024 * 64
SERVER_INFO_FILE_PATH = "/var/run/numaflow/sideinput-server-info"


@dataclass(frozen=True)
class Message:
    """Value produced by a side input retriever."""

    value: bytes
    no_broadcast: bool = False


def broadcast_message(value: bytes) -> Message:
    """Create a message whose value is broadcast to the side input vertices."""
    return Message(value=value, no_broadcast=False)


def no_broadcast_message() -> Message:
    """Create a message that is dropped instead of broadcast."""
    return Message(value=b"", no_broadcast=True)


class SideInputRetriever(ABC):
    """Produces the current value of a side input on request."""

    @abstractmethod
    def retrieve_side_input(self) -> Message:
        """Return the side input message for one retrieval request."""


RetrieverLike = Union[SideInputRetriever, Callable[[], Message]]


@dataclass
class Options:
    """Server settings."""

    sock_addr: str = ADDRESS
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    server_info_file_path: str = SERVER_INFO_FILE_PATH


def default_options() -> Options:
    """Return the default server settings."""
    return Options()


@dataclass(frozen=True)
class ReadyResponse:
    ready: bool


@dataclass(frozen=True)
class SideInputResponse:
    value: bytes
    no_broadcast: bool = False


class _BaseService:
    """State shared by every service: the shutdown signal and the handshake."""

    def __init__(self, shutdown: Optional[threading.Event] = None) -> None:
        self.shutdown = shutdown if shutdown is not None else threading.Event()

    def _accept_handshake(self, stream: Any, reply: Any) -> None:
        """Receive the opening handshake of ``stream`` and answer with ``reply``."""
        try:
            request = stream.recv()
        except Exception as exc:
            logger.error("error receiving handshake from stream: %s", exc)
            raise
        handshake = getattr(request, "handshake", None)
        if handshake is None or not handshake.sot:
            raise ValueError("expected handshake message")
        stream.send(reply)


class Service(_BaseService):
    """Answers readiness and side input retrieval requests."""

    def __init__(
        self,
        retriever: Optional[RetrieverLike],
        shutdown: Optional[threading.Event] = None,
    ) -> None:
        super().__init__(shutdown)
        self.retriever = retriever

    def is_ready(self) -> ReadyResponse:
        """Report that the service is ready."""
        return ReadyResponse(ready=True)

    def retrieve_side_input(self) -> Optional[SideInputResponse]:
        """Run the retriever once and wrap its message.

        If the retriever fails, the failure is logged, shutdown is signalled
        and ``None`` is returned.
        """
        retrieve = getattr(self.retriever, "retrieve_side_input", self.retriever)
        try:
            message = retrieve()
        except Exception:
            logger.exception("panic inside sideinput handler")
            self.shutdown.set()
            return None
        return SideInputResponse(value=message.value, no_broadcast=message.no_broadcast)