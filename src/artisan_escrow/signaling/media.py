"""Media capability consumed by call sessions.

The session never touches devices or network transport directly: it asks a
``MediaCapability`` for a local stream and a peer connection. Browser and
native clients provide real implementations; tests provide fakes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from artisan_escrow.signaling.messages import IceCandidate, SessionDescription

# Connection states that end a call, as reported by the transport.
TERMINAL_CONNECTION_STATES = frozenset({"disconnected", "failed", "closed"})


class MediaUnavailableError(Exception):
    """Local media could not be acquired."""


class PermissionDeniedError(MediaUnavailableError):
    """The user refused microphone or camera access."""


class NoDeviceError(MediaUnavailableError):
    """No microphone or camera is present."""


class MediaTrack(Protocol):
    kind: str

    def stop(self) -> None: ...


class MediaStream(Protocol):
    def get_tracks(self) -> list[MediaTrack]: ...


IceCandidateHandler = Callable[[IceCandidate | None], Awaitable[None]]
TrackHandler = Callable[[MediaStream], Awaitable[None]]
ConnectionStateHandler = Callable[[str], Awaitable[None]]


class PeerConnection(Protocol):
    connection_state: str

    def add_track(self, track: MediaTrack, stream: MediaStream) -> None: ...

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> None: ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None: ...

    def on_ice_candidate(self, handler: IceCandidateHandler) -> None: ...

    def on_track(self, handler: TrackHandler) -> None: ...

    def on_connection_state_change(self, handler: ConnectionStateHandler) -> None: ...

    async def close(self) -> None: ...


class MediaCapability(Protocol):
    async def get_local_stream(self, audio: bool, video: bool) -> MediaStream:
        """Raises PermissionDeniedError or NoDeviceError."""
        ...

    def create_peer_connection(self, ice_servers: list[str]) -> PeerConnection: ...
