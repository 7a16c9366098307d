"""AudioService: the track-level API over recorder, players, mixer and storage."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

from loopmix.constants import DEFAULT_MAX_CONCURRENT_PLAYERS
from loopmix.errors import AudioError, AudioErrorKind
from loopmix.files import FileManager
from loopmix.mixer.service import Mixer
from loopmix.models import (
    MixerTrackInput,
    MixOptions,
    MixResult,
    PlaybackOptions,
    RecordingOptions,
    Track,
)
from loopmix.player.base import Player, check_speed, check_volume
from loopmix.recorder.base import Recorder

logger = logging.getLogger(__name__)


class AudioService:
    """Coordinates one recorder, one player per loaded track, one mixer and
    the file manager.

    Tracks are kept in insertion order; that order is the mix input order.
    At most ``max_concurrent_players`` tracks can be loaded at once. A
    recording that hits its max duration becomes a track on its own and is
    passed to ``on_auto_stop``.
    """

    def __init__(
        self,
        recorder: Recorder,
        player_factory: Callable[[], Player],
        mixer: Mixer,
        file_manager: FileManager,
        max_concurrent_players: int = DEFAULT_MAX_CONCURRENT_PLAYERS,
    ):
        self.recorder = recorder
        self.player_factory = player_factory
        self.mixer = mixer
        self.file_manager = file_manager
        self.max_concurrent_players = max_concurrent_players
        self._tracks: dict[str, Track] = {}
        self._players: dict[str, Player] = {}
        self._pending_name: Optional[str] = None
        self.on_auto_stop: Optional[Callable[[Track], None]] = None
        if self.recorder.on_auto_stop is None:
            self.recorder.on_auto_stop = self._handle_auto_stop

    # -- tracks --

    def get_tracks(self) -> list[Track]:
        return list(self._tracks.values())

    def get_track(self, track_id: str) -> Track:
        track = self._tracks.get(track_id)
        if track is None:
            raise AudioError(
                AudioErrorKind.FILE_NOT_FOUND,
                f"Track not found: {track_id}",
                "Audio track not found",
            )
        return track

    def add_track(self, track: Track) -> Track:
        self._tracks[track.id] = track
        return track

    def select_track(self, track_id: str, selected: bool = True) -> None:
        self.get_track(track_id).selected = selected

    async def import_track(self, source_uri: str, name: Optional[str] = None) -> Track:
        """Copy an audio file into app storage and add it as a track."""
        source = Path(source_uri)
        ext = source.suffix.lstrip(".").lower() or "mp3"
        filename = self.file_manager.generate_unique_filename("import", ext)
        uri = await self.file_manager.copy_to_app_storage(source_uri, filename)
        duration = await self.file_manager.probe_duration_ms(uri)
        track = Track(name=name or source.stem, uri=uri, duration_ms=int(duration))
        logger.info("Imported track %s from %s", track.id, source_uri)
        return self.add_track(track)

    async def delete_track(self, track_id: str) -> bool:
        """Remove a track, unloading it first. Returns whether a file was deleted."""
        track = self.get_track(track_id)
        if track_id in self._players:
            await self.unload_track(track_id)
        del self._tracks[track_id]
        return await self.file_manager.delete_audio_file(track.uri)

    async def export_track(self, track_id: str, filename: Optional[str] = None) -> str:
        track = self.get_track(track_id)
        return await self.file_manager.export_to_external_storage(
            track.uri, filename or track.name
        )

    # -- recording --

    async def request_recording_permission(self) -> bool:
        return await self.recorder.check_permission()

    async def start_recording(
        self, options: Optional[RecordingOptions] = None, name: Optional[str] = None
    ) -> None:
        await self.recorder.start(options)
        self._pending_name = name

    async def stop_recording(self) -> Track:
        uri = await self.recorder.stop()
        return self._add_recording(uri)

    async def cancel_recording(self) -> None:
        if self.recorder.is_recording():
            await self.recorder.cancel()
        self._pending_name = None

    def is_recording(self) -> bool:
        return self.recorder.is_recording()

    def get_recording_duration(self) -> float:
        return self.recorder.get_recording_duration()

    # -- playback --

    async def load_track(self, track_id: str, options: Optional[PlaybackOptions] = None) -> None:
        track = self.get_track(track_id)
        if track_id in self._players:
            await self.unload_track(track_id)
        elif len(self._players) >= self.max_concurrent_players:
            raise AudioError(
                AudioErrorKind.RESOURCE_UNAVAILABLE,
                f"Cannot load track: maximum {self.max_concurrent_players} concurrent players",
                "Too many audio tracks loaded",
            )

        if options is None:
            options = PlaybackOptions(speed=track.speed, volume=track.volume)
        player = self.player_factory()
        player.on_complete = lambda: self._handle_complete(track_id)
        await player.load(track.uri, options)
        self._players[track_id] = player
        if options.speed is not None:
            track.speed = options.speed
        if options.volume is not None:
            track.volume = options.volume
        if not track.duration_ms:
            track.duration_ms = int(await player.get_duration())

    async def unload_track(self, track_id: str) -> None:
        player = self._players.pop(track_id, None)
        if player is None:
            return
        track = self._tracks.get(track_id)
        if track is not None:
            track.is_playing = False
        await player.unload()

    async def play_track(self, track_id: str) -> None:
        await self._player(track_id).play()
        self.get_track(track_id).is_playing = True

    async def pause_track(self, track_id: str) -> None:
        await self._player(track_id).pause()
        self.get_track(track_id).is_playing = False

    async def stop_track(self, track_id: str) -> None:
        await self._player(track_id).stop()
        self.get_track(track_id).is_playing = False

    async def set_track_speed(self, track_id: str, speed: float) -> None:
        track = self.get_track(track_id)
        check_speed(speed)
        if track_id in self._players:
            await self._players[track_id].set_speed(speed)
        track.speed = speed

    async def set_track_volume(self, track_id: str, volume: int) -> None:
        track = self.get_track(track_id)
        check_volume(volume)
        if track_id in self._players:
            await self._players[track_id].set_volume(volume)
        track.volume = volume

    async def set_track_looping(self, track_id: str, loop: bool) -> None:
        await self._player(track_id).set_looping(loop)

    async def set_track_position(self, track_id: str, position_ms: float) -> None:
        await self._player(track_id).set_position(position_ms)

    async def get_track_position(self, track_id: str) -> float:
        return await self._player(track_id).get_position()

    async def get_track_duration(self, track_id: str) -> float:
        return await self._player(track_id).get_duration()

    def is_track_playing(self, track_id: str) -> bool:
        player = self._players.get(track_id)
        return player is not None and player.is_playing()

    def get_loaded_track_ids(self) -> list[str]:
        return list(self._players)

    async def play_all(self) -> None:
        for track_id in list(self._players):
            await self.play_track(track_id)

    async def pause_all(self) -> None:
        for track_id in list(self._players):
            await self.pause_track(track_id)

    async def unload_all(self) -> None:
        for track_id in list(self._players):
            await self.unload_track(track_id)

    # -- mixing --

    def mix_inputs(self, track_ids: Optional[Iterable[str]] = None) -> list[MixerTrackInput]:
        """Mixer inputs for *track_ids* in that order, else every selected track."""
        if track_ids is not None:
            tracks = [self.get_track(track_id) for track_id in track_ids]
        else:
            tracks = [track for track in self._tracks.values() if track.selected]
        return [track.to_mixer_input() for track in tracks]

    async def mix_tracks(
        self,
        options: Optional[MixOptions] = None,
        track_ids: Optional[Iterable[str]] = None,
    ) -> MixResult:
        """Mix tracks into one file.

        ``options.tracks`` is used as given when non-empty; otherwise the
        inputs come from :meth:`mix_inputs`.
        """
        options = options or MixOptions()
        if not options.tracks:
            options = dataclasses.replace(options, tracks=self.mix_inputs(track_ids))
        return await self.mixer.mix(options)

    async def cancel_mixing(self) -> None:
        await self.mixer.cancel()

    def is_mixing(self) -> bool:
        return self.mixer.is_mixing()

    def estimate_mixing_duration(self, track_ids: Optional[Iterable[str]] = None) -> int:
        return self.mixer.estimate_mixing_duration(self.mix_inputs(track_ids))

    # -- files --

    async def list_audio_files(self) -> list[str]:
        return await self.file_manager.list_audio_files()

    async def cleanup_temp_files(self) -> int:
        return await self.file_manager.cleanup_temp_files()

    # -- lifecycle --

    async def cleanup(self) -> None:
        """Stop recording and mixing, unload every track and release backends.

        Each step runs even if an earlier one fails.
        """
        steps = (
            ("cancel recording", self.cancel_recording),
            ("release mixer", self.mixer.cleanup),
            ("unload tracks", self.unload_all),
            ("release recorder", self.recorder.cleanup),
            ("remove temporary files", self.file_manager.cleanup_temp_files),
        )
        for label, step in steps:
            try:
                await step()
            except Exception:
                logger.warning("Cleanup step failed: %s", label, exc_info=True)
        self._players.clear()

    # -- internal --

    def _player(self, track_id: str) -> Player:
        player = self._players.get(track_id)
        if player is None:
            self.get_track(track_id)
            raise AudioError(
                AudioErrorKind.PLAYBACK_FAILED,
                f"Track not loaded: {track_id}",
                "Audio track not loaded",
            )
        return player

    def _add_recording(self, uri: str) -> Track:
        name = self._pending_name or f"Recording {len(self._tracks) + 1}"
        self._pending_name = None
        track = Track(name=name, uri=uri, duration_ms=int(self.recorder.get_duration()))
        logger.info("Recorded track %s (%d ms)", track.id, track.duration_ms)
        return self.add_track(track)

    def _handle_auto_stop(self, uri: str) -> None:
        track = self._add_recording(uri)
        if self.on_auto_stop is not None:
            self.on_auto_stop(track)

    def _handle_complete(self, track_id: str) -> None:
        track = self._tracks.get(track_id)
        if track is not None:
            track.is_playing = False
