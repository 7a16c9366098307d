"""Tests for AudioService composed from mock components."""

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from loopmix.errors import AudioError, AudioErrorKind
from loopmix.files import InMemoryFileManager, LocalFileManager
from loopmix.mixer import Mixer, MockMixEngine
from loopmix.models import MixOptions, PlaybackOptions, RecordingOptions, Track
from loopmix.player import MockPlayerBackend, Player
from loopmix.recorder import MockRecorderBackend, Recorder
from loopmix.service import AudioService


class FailingMixer(Mixer):
    async def cleanup(self):
        raise RuntimeError("engine wedged")


def _service(tmp_path, max_players=10, mixer=None):
    players = []

    def make_player():
        player = Player(MockPlayerBackend(duration_ms=3000))
        players.append(player)
        return player

    service = AudioService(
        recorder=Recorder(MockRecorderBackend(output_dir=tmp_path / "rec")),
        player_factory=make_player,
        mixer=mixer or Mixer(MockMixEngine(), tmp_path / "mixes"),
        file_manager=InMemoryFileManager(),
        max_concurrent_players=max_players,
    )
    service.created_players = players
    return service


def _add(service, name, **kwargs):
    return service.add_track(Track(name=name, uri=f"memory://audio/{name}.wav", **kwargs))


class TestTracks:
    def test_insertion_order(self, tmp_path):
        service = _service(tmp_path)
        a, b = _add(service, "a"), _add(service, "b")
        assert [t.id for t in service.get_tracks()] == [a.id, b.id]

    def test_unknown_track(self, tmp_path):
        with pytest.raises(AudioError) as exc_info:
            _service(tmp_path).get_track("missing")
        assert exc_info.value.kind is AudioErrorKind.FILE_NOT_FOUND

    def test_import_track(self, tmp_path):
        service = _service(tmp_path)
        service.file_manager.add("/music/loop.wav", b"RIFF", duration_ms=2500)
        track = asyncio.run(service.import_track("/music/loop.wav"))
        assert track.name == "loop"
        assert track.duration_ms == 2500
        assert track.uri.startswith("memory://audio/import-")
        assert track.uri.endswith(".wav")
        assert service.get_tracks() == [track]

    def test_import_missing_file(self, tmp_path):
        service = _service(tmp_path)
        with pytest.raises(AudioError) as exc_info:
            asyncio.run(service.import_track("/music/nope.wav"))
        assert exc_info.value.kind is AudioErrorKind.FILE_NOT_FOUND
        assert service.get_tracks() == []

    def test_delete_track_unloads_and_removes_file(self, tmp_path):
        service = _service(tmp_path)
        service.file_manager.add("memory://audio/a.wav")
        track = _add(service, "a")

        async def run():
            await service.load_track(track.id)
            return await service.delete_track(track.id)

        assert asyncio.run(run()) is True
        assert service.get_tracks() == []
        assert service.get_loaded_track_ids() == []
        assert "unload" in service.created_players[0].backend.calls

    def test_delete_failure_is_audio_error(self, tmp_path):
        service = _service(tmp_path)
        service.file_manager = LocalFileManager(tmp_path / "data")
        path = service.file_manager.imports_dir / "a.wav"
        path.write_bytes(b"RIFF")
        track = service.add_track(Track(name="a", uri=str(path)))

        with patch("pathlib.Path.unlink", side_effect=PermissionError("read-only")):
            with pytest.raises(AudioError) as exc_info:
                asyncio.run(service.delete_track(track.id))
        assert exc_info.value.kind is AudioErrorKind.RESOURCE_UNAVAILABLE

    def test_export_track(self, tmp_path):
        service = _service(tmp_path)
        service.file_manager.add("memory://audio/a.wav", b"x")
        track = _add(service, "a")
        uri = asyncio.run(service.export_track(track.id, "shared.wav"))
        assert uri == "memory://external/shared.wav"


class TestRecording:
    def test_record_creates_track(self, tmp_path):
        service = _service(tmp_path)

        async def run():
            await service.start_recording(RecordingOptions(), name="Take 1")
            assert service.is_recording()
            await asyncio.sleep(0.02)
            return await service.stop_recording()

        track = asyncio.run(run())
        assert track.name == "Take 1"
        assert Path(track.uri).exists()
        assert track.duration_ms >= 15
        assert not service.is_recording()
        assert service.get_tracks() == [track]

    def test_default_names_count_tracks(self, tmp_path):
        service = _service(tmp_path)
        _add(service, "existing")

        async def run():
            await service.start_recording()
            return await service.stop_recording()

        assert asyncio.run(run()).name == "Recording 2"

    def test_auto_stop_adds_track(self, tmp_path):
        service = _service(tmp_path)
        stopped = []
        service.on_auto_stop = stopped.append

        async def run():
            await service.start_recording(RecordingOptions(max_duration_ms=30), name="Auto")
            await asyncio.sleep(0.15)

        asyncio.run(run())
        assert len(stopped) == 1
        assert stopped[0].name == "Auto"
        assert service.get_tracks() == stopped
        assert not service.is_recording()

    def test_cancel_when_idle_is_quiet(self, tmp_path):
        asyncio.run(_service(tmp_path).cancel_recording())

    def test_cancel_discards(self, tmp_path):
        service = _service(tmp_path)

        async def run():
            await service.start_recording()
            await service.cancel_recording()

        asyncio.run(run())
        assert service.get_tracks() == []

    def test_permission(self, tmp_path):
        assert asyncio.run(_service(tmp_path).request_recording_permission()) is True


class TestPlayback:
    def test_load_uses_track_settings(self, tmp_path):
        service = _service(tmp_path)
        track = _add(service, "a", speed=1.5, volume=60)
        asyncio.run(service.load_track(track.id))
        backend = service.created_players[0].backend
        assert backend.speed == 1.5
        assert backend.volume == 60
        assert track.duration_ms == 3000
        assert service.get_loaded_track_ids() == [track.id]

    def test_load_options_update_track(self, tmp_path):
        service = _service(tmp_path)
        track = _add(service, "a")
        asyncio.run(service.load_track(track.id, PlaybackOptions(speed=0.5, volume=20)))
        assert track.speed == 0.5
        assert track.volume == 20

    def test_player_limit(self, tmp_path):
        service = _service(tmp_path, max_players=2)
        tracks = [_add(service, name) for name in "abc"]

        async def run():
            await service.load_track(tracks[0].id)
            await service.load_track(tracks[1].id)
            await service.load_track(tracks[0].id)  # reload does not count twice
            await service.load_track(tracks[2].id)

        with pytest.raises(AudioError) as exc_info:
            asyncio.run(run())
        assert exc_info.value.kind is AudioErrorKind.RESOURCE_UNAVAILABLE
        assert service.get_loaded_track_ids() == [tracks[1].id, tracks[0].id]

    def test_play_pause_stop(self, tmp_path):
        service = _service(tmp_path)
        track = _add(service, "a")

        async def run():
            await service.load_track(track.id)
            await service.play_track(track.id)
            assert track.is_playing
            assert service.is_track_playing(track.id)
            await service.pause_track(track.id)
            assert not track.is_playing
            await service.play_track(track.id)
            await service.stop_track(track.id)

        asyncio.run(run())
        assert not service.is_track_playing(track.id)

    def test_unloaded_track_operations_fail(self, tmp_path):
        service = _service(tmp_path)
        track = _add(service, "a")
        with pytest.raises(AudioError) as exc_info:
            asyncio.run(service.play_track(track.id))
        assert exc_info.value.kind is AudioErrorKind.PLAYBACK_FAILED
        assert not service.is_track_playing(track.id)

    def test_set_speed_without_player_updates_track(self, tmp_path):
        service = _service(tmp_path)
        track = _add(service, "a")
        asyncio.run(service.set_track_speed(track.id, 2.0))
        asyncio.run(service.set_track_volume(track.id, 10))
        assert track.speed == 2.0
        assert track.volume == 10

    def test_set_speed_rejects_out_of_range(self, tmp_path):
        service = _service(tmp_path)
        track = _add(service, "a")
        with pytest.raises(AudioError) as exc_info:
            asyncio.run(service.set_track_speed(track.id, 3.0))
        assert exc_info.value.kind is AudioErrorKind.PLAYBACK_FAILED
        assert track.speed == 1.0

    def test_set_speed_reaches_player(self, tmp_path):
        service = _service(tmp_path)
        track = _add(service, "a")

        async def run():
            await service.load_track(track.id)
            await service.set_track_speed(track.id, 0.75)
            await service.set_track_position(track.id, 1000)
            return await service.get_track_position(track.id)

        assert asyncio.run(run()) == 1000
        assert service.created_players[0].backend.speed == 0.75

    def test_play_all_and_unload_all(self, tmp_path):
        service = _service(tmp_path)
        tracks = [_add(service, name) for name in "ab"]

        async def run():
            for track in tracks:
                await service.load_track(track.id)
            await service.play_all()
            playing = [service.is_track_playing(t.id) for t in tracks]
            await service.pause_all()
            await service.unload_all()
            return playing

        assert asyncio.run(run()) == [True, True]
        assert service.get_loaded_track_ids() == []
        assert not any(t.is_playing for t in tracks)


class TestMixing:
    def test_selected_tracks_in_order(self, tmp_path):
        service = _service(tmp_path)
        a = _add(service, "a")
        b = _add(service, "b", volume=50)
        c = _add(service, "c", speed=2.0)
        service.select_track(b.id, False)
        inputs = service.mix_inputs()
        assert [i.uri for i in inputs] == [a.uri, c.uri]
        assert inputs[1].speed == 2.0

    def test_explicit_ids_keep_given_order(self, tmp_path):
        service = _service(tmp_path)
        a, b = _add(service, "a"), _add(service, "b")
        service.select_track(a.id, False)
        assert [i.uri for i in service.mix_inputs([b.id, a.id])] == [b.uri, a.uri]

    def test_mix_tracks(self, tmp_path):
        service = _service(tmp_path)
        _add(service, "a")
        _add(service, "b")
        options = MixOptions(format="wav")
        result = asyncio.run(service.mix_tracks(options))
        assert result.actual_format == "wav"
        assert Path(result.output_uri).exists()
        assert options.tracks == []
        assert len(service.mixer.engine.jobs[0].inputs) == 2

    def test_mix_without_selection_fails(self, tmp_path):
        service = _service(tmp_path)
        track = _add(service, "a")
        service.select_track(track.id, False)
        with pytest.raises(AudioError) as exc_info:
            asyncio.run(service.mix_tracks())
        assert exc_info.value.kind is AudioErrorKind.MIXING_FAILED

    def test_estimate(self, tmp_path):
        service = _service(tmp_path)
        _add(service, "a")
        _add(service, "b")
        assert service.estimate_mixing_duration() == 2000
        assert not service.is_mixing()


class TestCleanup:
    def test_releases_everything(self, tmp_path):
        service = _service(tmp_path)
        track = _add(service, "a")

        async def run():
            await service.load_track(track.id)
            await service.play_track(track.id)
            await service.start_recording()
            await service.cleanup()

        asyncio.run(run())
        assert not service.is_recording()
        assert service.get_loaded_track_ids() == []
        assert service.recorder.backend.cleaned_up
        assert service.mixer.engine.closed

    def test_continues_after_failed_step(self, tmp_path):
        service = _service(tmp_path, mixer=FailingMixer(MockMixEngine(), tmp_path))
        track = _add(service, "a")

        async def run():
            await service.load_track(track.id)
            await service.cleanup()

        asyncio.run(run())
        assert service.get_loaded_track_ids() == []
        assert service.recorder.backend.cleaned_up
