"""Tests for mix job synthesis."""

import pytest

from loopmix.errors import AudioError, AudioErrorKind
from loopmix.mixer.command import MixJob, build_mix_job, validate_tracks
from loopmix.models import MixerTrackInput, MixOptions


def _tracks(*specs):
    return [MixerTrackInput(uri=uri, speed=speed, volume=volume) for uri, speed, volume in specs]


THREE_TRACKS = _tracks(("a.wav", 1.0, 100), ("b.wav", 1.0, 50), ("c.wav", 2.0, 80))


def _build(tracks=None, durations=None, **kwargs):
    tracks = THREE_TRACKS if tracks is None else tracks
    return build_mix_job(tracks, MixOptions(tracks=tracks, **kwargs), durations)


class TestEndToEnd:
    def test_three_tracks_looped_with_fadeout(self):
        job = _build(loop_count=2, fadeout_duration_ms=2000)
        stages = job.stages()

        assert [s.kind for s in stages] == ["input", "input", "input", "merge", "loop", "fade"]
        assert [s.uri for s in stages[:3]] == ["a.wav", "b.wav", "c.wav"]
        assert [s.speed for s in stages[:3]] == [1.0, 1.0, 2.0]
        assert [s.volume for s in stages[:3]] == [100, 50, 80]

        merges = [s for s in stages if s.kind == "merge"]
        assert len(merges) == 1
        assert merges[0].sources == ("a0", "a1", "a2")

        loops = [s for s in stages if s.kind == "loop"]
        assert len(loops) == 1
        assert loops[0].count == 2

        fade_outs = [s for s in stages if s.kind == "fade" and s.direction == "out"]
        assert len(fade_outs) == 1
        assert stages.index(fade_outs[0]) > stages.index(loops[0])
        assert fade_outs[0].duration_ms == 2000

    def test_filter_graph_with_unknown_lengths(self):
        graph = _build(loop_count=2, fadeout_duration_ms=2000).filter_graph()
        chains = graph.split(";")
        assert chains[0] == "[0:a]volume=1[a0]"
        assert chains[1].startswith("[1:a]volume=0.15")
        assert chains[2].startswith("[2:a]atempo=2,volume=")
        assert chains[3] == "[a0][a1][a2]amix=inputs=3:duration=longest:normalize=0[mix]"
        assert chains[4] == "[mix]asplit=2[looped0][looped1]"
        assert chains[5] == "[looped0][looped1]concat=n=2:v=0:a=1[looped]"
        assert chains[6] == "[looped]areverse,afade=t=in:d=2,areverse[fadeout]"
        assert graph.count("afade") == 1

    def test_deterministic(self):
        assert _build(loop_count=3, fadeout_duration_ms=500) == _build(
            loop_count=3, fadeout_duration_ms=500
        )


class TestInputs:
    def test_caller_order_preserved(self):
        tracks = _tracks(("z.wav", 1.0, 100), ("a.wav", 1.0, 100), ("m.wav", 1.0, 100))
        job = _build(tracks)
        assert [s.uri for s in job.inputs] == ["z.wav", "a.wav", "m.wav"]

    def test_trim_precedes_tempo(self):
        tracks = [MixerTrackInput("a.wav", speed=0.5, start_time_ms=1000, duration_ms=2000)]
        stage = _build(tracks).inputs[0]
        assert stage.filters()[:3] == [
            "atrim=start=1:duration=2",
            "asetpts=PTS-STARTPTS",
            "atempo=0.5",
        ]

    def test_duration_only_trim(self):
        tracks = [MixerTrackInput("a.wav", duration_ms=1500)]
        assert _build(tracks).inputs[0].filters()[0] == "atrim=duration=1.5"

    def test_no_trim_by_default(self):
        assert not any(f.startswith("atrim") for f in _build().inputs[0].filters())

    def test_muted_track(self):
        tracks = [MixerTrackInput("a.wav", volume=0)]
        assert _build(tracks).inputs[0].filters() == ["volume=0"]

    def test_empty_tracks(self):
        with pytest.raises(AudioError) as exc_info:
            build_mix_job([], MixOptions())
        assert exc_info.value.kind is AudioErrorKind.MIXING_FAILED
        assert "No tracks" in exc_info.value.message

    def test_invalid_speed(self):
        with pytest.raises(AudioError) as exc_info:
            validate_tracks([MixerTrackInput("a.wav", speed=4.0)])
        assert exc_info.value.kind is AudioErrorKind.MIXING_FAILED
        assert "4.0" in exc_info.value.message

    @pytest.mark.parametrize("track", [
        MixerTrackInput(""),
        MixerTrackInput("a.wav", volume=120),
        MixerTrackInput("a.wav", start_time_ms=-5),
        MixerTrackInput("a.wav", duration_ms=0),
    ])
    def test_invalid_tracks(self, track):
        with pytest.raises(AudioError) as exc_info:
            validate_tracks([track])
        assert exc_info.value.kind is AudioErrorKind.MIXING_FAILED


class TestMergeLoopFade:
    def test_normalize_flag(self):
        assert "normalize=1" in _build(normalize=True).merge.render()

    def test_no_loop_or_fade_by_default(self):
        job = _build()
        assert job.loop is None
        assert job.fade_in is None
        assert job.fade_out is None
        assert job.output_label == "mix"

    def test_loop_count_must_be_positive(self):
        with pytest.raises(AudioError) as exc_info:
            _build(loop_count=0)
        assert exc_info.value.kind is AudioErrorKind.MIXING_FAILED

    def test_fade_in_once_before_fade_out(self):
        job = _build(loop_count=2, fade_in_ms=500, fadeout_duration_ms=1000)
        kinds = [(s.kind, getattr(s, "direction", None)) for s in job.stages()]
        assert kinds[-3:] == [("loop", None), ("fade", "in"), ("fade", "out")]
        assert job.fade_in.render() == "[looped]afade=t=in:st=0:d=0.5[fadein]"
        assert job.fade_out.source == "fadein"

    def test_fade_out_ms_fallback(self):
        job = _build(fade_out_ms=750)
        assert job.fade_out.duration_ms == 750

    def test_fadeout_duration_wins(self):
        job = _build(fade_out_ms=750, fadeout_duration_ms=3000)
        assert job.fade_out.duration_ms == 3000

    def test_fade_out_start_when_length_known(self):
        tracks = [
            MixerTrackInput("a.wav", duration_ms=4000),
            MixerTrackInput("b.wav", speed=2.0, duration_ms=4000),
        ]
        job = _build(tracks, loop_count=2, fadeout_duration_ms=1000)
        assert job.fade_out.start_ms == 8000
        assert job.fade_out.render() == "[looped]afade=t=out:st=8:d=1[fadeout]"

    def test_fade_out_longer_than_master_loop(self):
        tracks = [MixerTrackInput("a.wav", duration_ms=500)]
        job = _build(tracks, fadeout_duration_ms=2000)
        assert job.fade_out.start_ms == 500
        assert job.loop.count == 1
        assert job.loop.copies == 5
        assert job.loop.render().endswith("concat=n=5:v=0:a=1,atrim=duration=2.5[looped]")


class TestMasterLoop:
    CLAMPED = [
        MixerTrackInput("long.wav", duration_ms=4000),
        MixerTrackInput("short.wav", duration_ms=1000),
    ]

    def test_shorter_input_repeats_to_master_length(self):
        job = _build(self.CLAMPED)
        assert job.master_ms == 4000
        assert not job.inputs[0].repeats
        assert job.inputs[1].filters() == [
            "atrim=duration=1",
            "asetpts=PTS-STARTPTS",
            "aresample=44100",
            "aloop=loop=-1:size=44100",
            "atrim=duration=4",
            "volume=1",
        ]

    def test_master_from_source_durations(self):
        job = _build(durations=[4000, 2000, 6000])
        assert job.master_ms == 4000
        a, b, c = job.inputs
        assert not a.repeats
        assert "aloop=loop=-1:size=88200" in b.filters()
        # c runs at double speed, so its 6 s source lasts 3 s
        assert c.filters()[:4] == [
            "atempo=2",
            "aresample=44100",
            "aloop=loop=-1:size=132300",
            "atrim=duration=4",
        ]

    def test_equal_lengths_do_not_repeat(self):
        job = _build(_tracks(("a.wav", 1.0, 100), ("b.wav", 1.0, 100)), durations=[3000, 3000])
        assert not any(stage.repeats for stage in job.inputs)
        assert "aloop" not in job.filter_graph()

    def test_loop_size_follows_output_rate(self):
        job = _build(self.CLAMPED, sample_rate=48000)
        assert "aloop=loop=-1:size=48000" in job.inputs[1].filters()

    def test_crossfade_at_repeat_seams(self):
        job = _build(self.CLAMPED, crossfade_ms=100)
        filters = job.inputs[1].filters()
        assert "afade=t=in:st=0:d=0.1" in filters
        assert "afade=t=out:st=0.9:d=0.1" in filters
        assert filters.index("afade=t=out:st=0.9:d=0.1") < filters.index("aloop=loop=-1:size=44100")
        assert not any(f.startswith("afade") for f in job.inputs[0].filters())

    def test_crossfade_skipped_for_short_segments(self):
        job = _build(self.CLAMPED, crossfade_ms=600)
        assert not any(f.startswith("afade") for f in job.inputs[1].filters())

    def test_negative_crossfade(self):
        with pytest.raises(AudioError) as exc_info:
            _build(self.CLAMPED, crossfade_ms=-1)
        assert exc_info.value.kind is AudioErrorKind.MIXING_FAILED

    def test_unknown_length_disables_repeat(self):
        job = _build(durations=[4000, 0, 2000])
        assert job.master_ms is None
        assert not any(stage.repeats for stage in job.inputs)

    def test_duration_count_must_match(self):
        with pytest.raises(ValueError):
            _build(durations=[4000])


class TestFadeOutTail:
    def test_fade_follows_all_repetitions(self):
        job = _build(TestMasterLoop.CLAMPED, loop_count=2, fadeout_duration_ms=2000)
        assert job.loop.render() == (
            "[mix]asplit=3[looped0][looped1][looped2];"
            "[looped0][looped1][looped2]concat=n=3:v=0:a=1,atrim=duration=10[looped]"
        )
        assert job.fade_out.render() == "[looped]afade=t=out:st=8:d=2[fadeout]"
        assert job.estimate_duration_ms([0, 0]) == 10_000

    def test_single_pass_gets_tail(self):
        job = _build(TestMasterLoop.CLAMPED, fadeout_duration_ms=1000)
        assert job.loop.count == 1
        assert job.loop_count == 1
        assert job.fade_out.start_ms == 4000
        assert job.estimate_duration_ms([0, 0]) == 5000

    def test_known_lengths_never_reverse(self):
        job = _build(durations=[4000, 4000, 4000], loop_count=4, fadeout_duration_ms=2000)
        graph = job.filter_graph()
        assert "areverse" not in graph
        assert "afade=t=out:st=16:d=2" in graph
        assert graph.count("afade") == 1

    def test_fade_in_stays_at_start(self):
        job = _build(durations=[4000, 4000, 4000], fade_in_ms=500, fadeout_duration_ms=1000)
        kinds = [(s.kind, getattr(s, "direction", None)) for s in job.stages()]
        assert kinds[-3:] == [("loop", None), ("fade", "in"), ("fade", "out")]
        assert job.fade_out.start_ms == 4000


class TestOutputTarget:
    def test_default_format(self):
        job = _build()
        assert job.output.format == "mp3"
        assert job.output.codec == "libmp3lame"
        assert job.output.bit_rate == 192
        assert job.output.sample_rate == 44100
        assert job.output.channels == 2

    def test_unsupported_format_falls_back(self):
        job = _build(format="ogg")
        assert job.output.format == "mp3"

    def test_wav_has_no_bit_rate(self):
        job = _build(format="wav", bit_rate=256)
        assert job.output.codec == "pcm_s16le"
        assert job.output.bit_rate is None
        assert "-b:a" not in job.output.args()

    def test_m4a(self):
        job = _build(format="m4a", quality="low")
        assert job.output.codec == "aac"
        assert job.output.bit_rate == 96

    def test_explicit_bit_rate(self):
        args = _build(bit_rate=256, sample_rate=48000, channels=1).output.args()
        assert args == ["-c:a", "libmp3lame", "-ar", "48000", "-ac", "1", "-b:a", "256k"]

    def test_invalid_channels(self):
        with pytest.raises(AudioError):
            _build(channels=6)


class TestArgs:
    def test_to_args(self):
        tracks = _tracks(("file:///music/a.wav", 1.0, 100), ("/music/b.wav", 1.0, 100))
        args = _build(tracks, fadeout_duration_ms=1000).to_args("/out/mix.mp3", binary="/usr/bin/ffmpeg")
        assert args[0] == "/usr/bin/ffmpeg"
        assert args[args.index("-progress") + 1] == "pipe:1"
        inputs = [args[i + 1] for i, a in enumerate(args) if a == "-i"]
        assert inputs == ["/music/a.wav", "/music/b.wav"]
        assert args[args.index("-map") + 1] == "[fadeout]"
        assert args[-2:] == ["-y", "/out/mix.mp3"]

    def test_without_progress(self):
        args = _build().to_args("out.mp3", progress=False)
        assert "-progress" not in args


class TestEstimateDuration:
    def test_longest_input_times_loops(self):
        job = _build(loop_count=2)
        assert job.estimate_duration_ms([4000, 4000, 4000]) == 8000

    def test_speed_shortens_input(self):
        job = _build(_tracks(("a.wav", 2.0, 100)))
        assert job.estimate_duration_ms([6000]) == 3000

    def test_trim_limits_length(self):
        job = _build([MixerTrackInput("a.wav", start_time_ms=1000, duration_ms=2000)])
        assert job.estimate_duration_ms([10_000]) == 2000

    def test_unknown_lengths(self):
        assert isinstance(_build(), MixJob)
        assert _build().estimate_duration_ms([0, 0, 0]) == 0
