"""Call signaling session — one peer's side of an audio/video call.

Peers of a conversation share the broadcast channel ``call-<conversation_id>``
and negotiate a peer connection over it:

    caller:  idle -> calling -> connected -> idle
    callee:  idle -> ringing -> calling -> connected -> idle

Any hangup, reject, transport failure or setup error resets to idle.

Every call gets a generation number. Each await in call setup is followed by
a generation check, so an operation resumed after the call was torn down
(remote hangup while the permission prompt was open, for example) releases
what it acquired and stops instead of resurrecting the call.

Failures never escape the session: they become ``error`` plus a reset to idle.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from artisan_escrow.config import Settings, get_settings
from artisan_escrow.domain.enums import CallStatus, SignalType
from artisan_escrow.domain.exceptions import (
    CallSetupError,
    CallTimeoutError,
    ChannelNotReadyError,
    MediaAccessError,
    RemoteRejectionError,
    SignalingError,
    TransportFailureError,
)
from artisan_escrow.logging_config import get_logger
from artisan_escrow.signaling.media import TERMINAL_CONNECTION_STATES, MediaUnavailableError
from artisan_escrow.signaling.messages import (
    CALL_EVENT,
    AnswerSignal,
    HangupSignal,
    IceCandidate,
    IceSignal,
    OfferSignal,
    RejectSignal,
    SessionDescription,
    parse_signal,
)

if TYPE_CHECKING:
    from artisan_escrow.signaling.channel import BroadcastChannel, ChannelFactory, Subscription
    from artisan_escrow.signaling.media import (
        MediaCapability,
        MediaStream,
        PeerConnection,
    )
    from artisan_escrow.signaling.messages import CallSignal


# Candidates kept for a peer whose offer has not arrived yet.
EARLY_ICE_PER_PEER = 32
EARLY_ICE_PEERS = 8


@dataclass(frozen=True)
class IncomingCall:
    peer_id: str
    name: str
    video: bool


class CallSignalingSession:
    """Signaling state machine for the local peer of a conversation.

    Usage:
        async with CallSignalingSession(factory, media, conversation_id, me, "Awa",
                                        remote_peer_id=artisan_id) as session:
            await session.start_call(video=True)
    """

    def __init__(
        self,
        channel_factory: ChannelFactory,
        media: MediaCapability,
        conversation_id: str,
        local_peer_id: str,
        local_name: str,
        remote_peer_id: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._factory = channel_factory
        self._media = media
        self._settings = settings or get_settings()
        self.conversation_id = conversation_id
        self.channel_id = f"{self._settings.redis_channel_prefix}{conversation_id}"
        self.local_peer_id = local_peer_id
        self.local_name = local_name
        self.remote_peer_id = remote_peer_id

        # Observable state
        self.status = CallStatus.IDLE
        self.incoming_call: IncomingCall | None = None
        self.error: SignalingError | None = None
        self.is_video = False
        self.local_stream: MediaStream | None = None
        self.remote_stream: MediaStream | None = None

        self._channel: BroadcastChannel | None = None
        self._subscription: Subscription | None = None
        self._pc: PeerConnection | None = None
        self._generation = 0
        self._peer_id: str | None = None
        self._is_caller = False
        self._pending_offer: SessionDescription | None = None
        self._pending_ice: list[IceCandidate] = []
        self._early_ice: dict[str, list[IceCandidate]] = {}
        self._remote_description_set = False
        self._ring_timer: asyncio.Task | None = None
        self._error_reset: asyncio.TimerHandle | None = None

        self._log = get_logger(
            __name__,
            conversation_id=conversation_id,
            peer_id=local_peer_id,
        )
        self._handlers = {
            SignalType.OFFER: self._on_offer,
            SignalType.ANSWER: self._on_answer,
            SignalType.ICE: self._on_ice,
            SignalType.HANGUP: self._on_hangup,
            SignalType.REJECT: self._on_reject,
        }

    async def __aenter__(self) -> CallSignalingSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._channel is not None

    # ------------------------------------------------------------------
    # Channel lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Join the conversation's channel and start receiving signals."""
        if self._channel is not None:
            return
        channel = self._factory.join(self.channel_id)
        channel.on(CALL_EVENT, self.handle_message)
        self._channel = channel
        self._subscription = channel.subscribe(self._on_channel_status)
        self._log.info("call.session_opened", channel=self.channel_id)

    async def close(self) -> None:
        """End any call in progress and leave the channel."""
        try:
            if self._has_call:
                await self.end_call()
        finally:
            if self._error_reset is not None:
                self._error_reset.cancel()
                self._error_reset = None
            subscription, self._subscription = self._subscription, None
            self._channel = None
            if subscription is not None:
                await self._factory.unsubscribe(subscription)
            self._log.info("call.session_closed", channel=self.channel_id)

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    async def start_call(self, video: bool = False) -> None:
        """Call the remote peer. Failures end up in ``error``."""
        if not self.remote_peer_id:
            self._log.warning("call.start_without_recipient")
            return
        if self.status != CallStatus.IDLE:
            self._log.warning("call.start_while_busy", status=self.status.value)
            return

        generation = self._begin_call(self.remote_peer_id, caller=True)
        self.error = None
        self.status = CallStatus.CALLING
        self.is_video = video
        self._log.info("call.starting", to=self.remote_peer_id, video=video)

        try:
            await self._wait_for_channel_ready()
            if self._is_stale(generation):
                return
            if not await self._acquire_media(video, generation):
                return
            pc = self._create_peer_connection(generation)

            offer = await pc.create_offer()
            if self._is_stale(generation):
                return
            await pc.set_local_description(offer)
            if self._is_stale(generation):
                return

            await self._send(
                OfferSignal(
                    from_=self.local_peer_id,
                    to=self.remote_peer_id,
                    sender_name=self.local_name or None,
                    sdp=offer,
                    video=video,
                )
            )
            if self._is_stale(generation):
                return
            self._start_ring_timer(generation)
        except SignalingError as exc:
            await self._fail(exc, generation)
        except Exception as exc:
            self._log.exception("call.start_failed")
            await self._fail(CallSetupError(str(exc) or "Unable to start the call"), generation)

    async def accept_call(self) -> None:
        """Answer the ringing call."""
        offer, caller = self._pending_offer, self.incoming_call
        if self.status != CallStatus.RINGING or offer is None or caller is None:
            return

        generation = self._generation
        self._pending_offer = None
        self.incoming_call = None
        self.error = None
        self.status = CallStatus.CALLING
        self.is_video = caller.video
        self._log.info("call.accepting", caller=caller.peer_id, video=caller.video)

        try:
            if not await self._acquire_media(caller.video, generation):
                return
            pc = self._create_peer_connection(generation)

            await pc.set_remote_description(offer)
            if self._is_stale(generation):
                return
            self._remote_description_set = True
            await self._flush_pending_ice(pc)
            if self._is_stale(generation):
                return

            answer = await pc.create_answer()
            if self._is_stale(generation):
                return
            await pc.set_local_description(answer)
            if self._is_stale(generation):
                return

            await self._send(AnswerSignal(from_=self.local_peer_id, to=caller.peer_id, sdp=answer))
        except MediaAccessError as exc:
            await self._fail(exc, generation)
        except Exception:
            self._log.exception("call.accept_failed")
            await self._fail(CallSetupError(), generation)

    async def reject_call(self) -> None:
        """Decline the ringing call. No-op in any other state."""
        caller = self.incoming_call
        if self.status != CallStatus.RINGING or caller is None:
            return
        self._log.info("call.rejected_by_user", caller=caller.peer_id)
        await self._release_call()
        await self._send_best_effort(RejectSignal(from_=self.local_peer_id, to=caller.peer_id))

    async def end_call(self) -> None:
        """Hang up. Safe to call in any state, any number of times.

        The peer is notified best-effort; local resources are always released.
        """
        peer_id = self._peer_id
        notify = self._has_call
        try:
            if notify:
                await self._send_best_effort(HangupSignal(from_=self.local_peer_id, to=peer_id))
        finally:
            await self._release_call()
            self.error = None
        if notify:
            self._log.info("call.ended", peer=peer_id)

    # ------------------------------------------------------------------
    # Incoming signals
    # ------------------------------------------------------------------

    async def handle_message(self, raw: Any) -> None:
        """Channel handler: validate, filter, dispatch on the signal type."""
        signal = parse_signal(raw)
        if signal is None:
            self._log.debug("call.malformed_signal")
            return
        if signal.from_ == self.local_peer_id:
            return
        if signal.to is not None and signal.to != self.local_peer_id:
            return
        try:
            await self._handlers[SignalType(signal.type)](signal)
        except Exception:
            self._log.exception("call.signal_failed", type=signal.type, sender=signal.from_)
            await self._release_call()

    async def _on_offer(self, signal: OfferSignal) -> None:
        if self.status == CallStatus.IDLE:
            self._ring(signal)
            return

        if self.status == CallStatus.RINGING and signal.from_ == self._peer_id:
            # Redelivered offer from the caller we are already ringing for.
            self._pending_offer = signal.sdp
            return

        if (
            self.status == CallStatus.CALLING
            and self._is_caller
            and signal.from_ == self._peer_id
            and not self._remote_description_set
        ):
            # Glare: both sides dialed each other. The smaller id yields.
            if self.local_peer_id < signal.from_:
                self._log.info("call.glare_yield", peer=signal.from_)
                queued = self._pending_ice
                await self._release_call()
                self._early_ice[signal.from_] = queued
                self._ring(signal)
            else:
                self._log.info("call.glare_keep", peer=signal.from_)
            return

        if self._settings.signaling_auto_reject_busy:
            self._log.info("call.busy_rejected", caller=signal.from_, status=self.status.value)
            await self._send_best_effort(RejectSignal(from_=self.local_peer_id, to=signal.from_))
        else:
            self._log.info("call.busy_ignored", caller=signal.from_, status=self.status.value)

    async def _on_answer(self, signal: AnswerSignal) -> None:
        pc = self._pc
        if (
            pc is None
            or not self._is_caller
            or signal.from_ != self._peer_id
            or self._remote_description_set
        ):
            return
        generation = self._generation
        try:
            await pc.set_remote_description(signal.sdp)
            if self._is_stale(generation):
                return
            self._remote_description_set = True
            await self._flush_pending_ice(pc)
        except Exception:
            self._log.exception("call.answer_failed")
            await self._fail(CallSetupError(), generation)

    async def _on_ice(self, signal: IceSignal) -> None:
        if signal.candidate is None:
            return
        if self._peer_id is None:
            # Ordering across event types is not guaranteed: the offer may follow.
            self._buffer_early_ice(signal.from_, signal.candidate)
            return
        if signal.from_ != self._peer_id:
            return
        if self._pc is None or not self._remote_description_set:
            if self.status in (CallStatus.RINGING, CallStatus.CALLING):
                self._pending_ice.append(signal.candidate)
            return
        await self._apply_ice(self._pc, signal.candidate)

    async def _on_hangup(self, signal: HangupSignal) -> None:
        self._early_ice.pop(signal.from_, None)
        if self._peer_id is None or signal.from_ != self._peer_id:
            return
        self._log.info("call.remote_hangup", peer=signal.from_)
        await self._release_call()

    async def _on_reject(self, signal: RejectSignal) -> None:
        if self.status != CallStatus.CALLING or not self._is_caller or signal.from_ != self._peer_id:
            return
        self._log.info("call.remote_rejected", peer=signal.from_)
        await self._release_call()
        self._show_transient_error(RemoteRejectionError(signal.from_))

    # ------------------------------------------------------------------
    # Peer connection callbacks
    # ------------------------------------------------------------------

    def _create_peer_connection(self, generation: int) -> PeerConnection:
        pc = self._media.create_peer_connection(self._settings.ice_server_list)
        self._pc = pc
        if self.local_stream is not None:
            for track in self.local_stream.get_tracks():
                pc.add_track(track, self.local_stream)

        async def on_ice_candidate(candidate: IceCandidate | None) -> None:
            if candidate is None or pc is not self._pc or self._peer_id is None:
                return
            await self._send_best_effort(
                IceSignal(from_=self.local_peer_id, to=self._peer_id, candidate=candidate)
            )

        async def on_track(stream: MediaStream) -> None:
            if pc is self._pc:
                self.remote_stream = stream

        async def on_connection_state_change(state: str) -> None:
            if pc is not self._pc or self._is_stale(generation):
                return
            if state == "connected":
                self._cancel_ring_timer()
                self.status = CallStatus.CONNECTED
                self._log.info("call.connected", peer=self._peer_id)
            elif state in TERMINAL_CONNECTION_STATES:
                self._log.info("call.transport_lost", state=state)
                await self.end_call()
                if state == "failed":
                    self.error = TransportFailureError(state)

        pc.on_ice_candidate(on_ice_candidate)
        pc.on_track(on_track)
        pc.on_connection_state_change(on_connection_state_change)
        return pc

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @property
    def _has_call(self) -> bool:
        return self.status != CallStatus.IDLE or self._pc is not None or self.local_stream is not None

    def _begin_call(self, peer_id: str, caller: bool) -> int:
        self._generation += 1
        self._peer_id = peer_id
        self._is_caller = caller
        return self._generation

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    def _ring(self, signal: OfferSignal) -> None:
        self._begin_call(signal.from_, caller=False)
        self._pending_offer = signal.sdp
        self._pending_ice = self._early_ice.pop(signal.from_, [])
        self.incoming_call = IncomingCall(signal.from_, signal.display_name, signal.video)
        self.status = CallStatus.RINGING
        self._log.info("call.ringing", caller=signal.from_, video=signal.video)

    def _on_channel_status(self, status: Any) -> None:
        self._log.debug("call.channel_status", status=str(status))

    async def _wait_for_channel_ready(self) -> None:
        """Poll the subscription until SUBSCRIBED or the deadline passes."""
        timeout = self._settings.signaling_channel_ready_timeout_seconds
        interval = self._settings.signaling_channel_poll_interval_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            subscription = self._subscription
            if subscription is None:
                raise ChannelNotReadyError(self.channel_id, timeout)
            if subscription.is_ready:
                return
            if loop.time() >= deadline:
                raise ChannelNotReadyError(self.channel_id, timeout)
            await asyncio.sleep(interval)

    async def _acquire_media(self, video: bool, generation: int) -> bool:
        """Get the local stream. False if the call went away meanwhile."""
        try:
            stream = await self._media.get_local_stream(audio=True, video=video)
        except MediaUnavailableError as exc:
            raise MediaAccessError(str(exc)) from exc
        if self._is_stale(generation):
            self._stop_tracks(stream)
            self._log.debug("call.media_released_stale")
            return False
        self.local_stream = stream
        return True

    def _buffer_early_ice(self, peer_id: str, candidate: IceCandidate) -> None:
        queued = self._early_ice.get(peer_id)
        if queued is None:
            if len(self._early_ice) >= EARLY_ICE_PEERS:
                self._early_ice.pop(next(iter(self._early_ice)))
            queued = self._early_ice[peer_id] = []
        if len(queued) < EARLY_ICE_PER_PEER:
            queued.append(candidate)

    async def _flush_pending_ice(self, pc: PeerConnection) -> None:
        queued, self._pending_ice = self._pending_ice, []
        for candidate in queued:
            await self._apply_ice(pc, candidate)

    async def _apply_ice(self, pc: PeerConnection, candidate: IceCandidate) -> None:
        try:
            await pc.add_ice_candidate(candidate)
        except Exception as exc:
            # A bad candidate only loses one network path.
            self._log.warning("call.ice_rejected", error=str(exc))

    async def _send(self, signal: CallSignal) -> None:
        if self._channel is None:
            raise ChannelNotReadyError(self.channel_id, 0)
        await self._channel.send(CALL_EVENT, signal.to_payload())

    async def _send_best_effort(self, signal: CallSignal) -> None:
        try:
            await self._send(signal)
        except Exception as exc:
            self._log.warning("call.signal_not_sent", type=signal.type, error=str(exc))

    def _start_ring_timer(self, generation: int) -> None:
        timeout = self._settings.signaling_ring_timeout_seconds
        if timeout <= 0:
            return
        self._cancel_ring_timer()
        self._ring_timer = asyncio.get_running_loop().create_task(
            self._ring_timeout(generation, timeout)
        )

    async def _ring_timeout(self, generation: int, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if self._is_stale(generation) or self.status != CallStatus.CALLING:
            return
        self._log.info("call.unanswered", peer=self._peer_id, timeout=timeout)
        await self.end_call()
        self.error = CallTimeoutError(timeout)

    def _cancel_ring_timer(self) -> None:
        timer, self._ring_timer = self._ring_timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    def _show_transient_error(self, error: SignalingError) -> None:
        """Surface an error that clears itself unless replaced first."""
        self.error = error
        if self._error_reset is not None:
            self._error_reset.cancel()
        self._error_reset = asyncio.get_running_loop().call_later(
            self._settings.signaling_rejection_notice_seconds,
            self._clear_error,
            error,
        )

    def _clear_error(self, error: SignalingError) -> None:
        self._error_reset = None
        if self.error is error:
            self.error = None

    async def _fail(self, error: SignalingError, generation: int) -> None:
        if self._is_stale(generation):
            return
        self._log.warning("call.failed", code=error.code, error=error.message)
        await self._release_call()
        self.error = error

    async def _release_call(self) -> None:
        """Reset to idle and release every call resource. Never raises.

        State is reset before anything is released, so callbacks fired by
        closing the connection see a stale peer connection and do nothing.
        """
        self._generation += 1
        self._cancel_ring_timer()
        pc, self._pc = self._pc, None
        stream, self.local_stream = self.local_stream, None
        self.status = CallStatus.ENDED
        self.remote_stream = None
        self.incoming_call = None
        self.is_video = False
        self._peer_id = None
        self._is_caller = False
        self._pending_offer = None
        self._pending_ice = []
        self._early_ice.clear()
        self._remote_description_set = False
        try:
            if stream is not None:
                self._stop_tracks(stream)
            if pc is not None:
                try:
                    await pc.close()
                except Exception as exc:
                    self._log.warning("call.peer_connection_close_failed", error=str(exc))
        finally:
            self.status = CallStatus.IDLE

    def _stop_tracks(self, stream: MediaStream) -> None:
        for track in stream.get_tracks():
            try:
                track.stop()
            except Exception as exc:
                self._log.warning("call.track_stop_failed", kind=track.kind, error=str(exc))
