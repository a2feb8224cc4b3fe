"""Peer-to-peer call signaling over a shared broadcast channel."""

from artisan_escrow.signaling.channel import (
    BroadcastChannel,
    ChannelFactory,
    ChannelStatus,
    RedisChannelFactory,
    Subscription,
)
from artisan_escrow.signaling.media import (
    MediaCapability,
    MediaStream,
    MediaTrack,
    MediaUnavailableError,
    NoDeviceError,
    PeerConnection,
    PermissionDeniedError,
)
from artisan_escrow.signaling.messages import CALL_EVENT, CallSignal, parse_signal
from artisan_escrow.signaling.session import CallSignalingSession, IncomingCall

__all__ = [
    "CALL_EVENT",
    "BroadcastChannel",
    "CallSignal",
    "CallSignalingSession",
    "ChannelFactory",
    "ChannelStatus",
    "IncomingCall",
    "MediaCapability",
    "MediaStream",
    "MediaTrack",
    "MediaUnavailableError",
    "NoDeviceError",
    "PeerConnection",
    "PermissionDeniedError",
    "RedisChannelFactory",
    "Subscription",
    "parse_signal",
]
