"""CLI entry point for loopmix."""

import asyncio
import logging
import shlex
import signal

import click

from loopmix import __version__
from loopmix.constants import VALID_FORMATS, VALID_MIX_FORMATS, VALID_QUALITIES, VALID_RUNTIMES
from loopmix.errors import AudioError

logger = logging.getLogger(__name__)


def _load_config():
    """Load config from the default location, then from the configured data dir."""
    from loopmix.config import LoopmixConfig
    from loopmix.paths import get_config_path, get_data_dir

    cfg = LoopmixConfig.load(get_config_path(get_data_dir()))
    data_dir = get_data_dir(cfg.storage.data_dir)
    cfg = LoopmixConfig.load(get_config_path(data_dir))
    return cfg, data_dir


def _create_factory(ctx, cfg, data_dir):
    from loopmix.factory import create_factory

    try:
        return create_factory(ctx.obj.get("runtime"), cfg, data_dir)
    except AudioError as e:
        raise click.ClickException(e.message)


def _run(ctx, coro):
    """Run *coro*, turning AudioErrors into a clean CLI failure."""
    try:
        return asyncio.run(coro)
    except AudioError as e:
        logger.debug("Command failed: %s", e.to_dict())
        if ctx.obj.get("verbose"):
            click.echo(f"{e.kind.value}: {e.message}", err=True)
        raise click.ClickException(e.user_message)


def _fmt_ms(ms: float) -> str:
    minutes, secs = divmod(int(ms / 1000), 60)
    return f"{minutes:02d}:{secs:02d}"


class _Interrupt:
    """First Ctrl+C asks the running command to stop; the second exits."""

    def __init__(self):
        self.requested = False
        self._count = 0
        self._original = None

    def __enter__(self):
        self._original = signal.getsignal(signal.SIGINT)
        signal.signal(signal.SIGINT, self._handle)
        return self

    def __exit__(self, *exc):
        signal.signal(signal.SIGINT, self._original)

    def _handle(self, sig, frame):
        self._count += 1
        if self._count >= 2:
            click.echo("\nForced exit.")
            raise SystemExit(1)
        self.requested = True


@click.group()
@click.version_option(version=__version__, prog_name="loopmix")
@click.option("--runtime", type=click.Choice(VALID_RUNTIMES), default=None,
              help="Audio backend set (default: LOOPMIX_RUNTIME, config, or desktop).")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging and technical errors.")
@click.pass_context
def main(ctx, runtime, verbose):
    """Record, play and mix audio loops."""
    ctx.ensure_object(dict)
    ctx.obj["runtime"] = runtime
    ctx.obj["verbose"] = verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--name", "-n", default=None, help="Track name.")
@click.option("--max-duration", default=None, help="Stop automatically after this long (e.g. 30s, 2m).")
@click.option("--format", "fmt", type=click.Choice(VALID_FORMATS), default=None,
              help="Recording format.")
@click.option("--sample-rate", type=int, default=None, help="Sample rate in Hz.")
@click.option("--channels", type=int, default=None, help="Number of channels.")
@click.pass_context
def record(ctx, name, max_duration, fmt, sample_rate, channels):
    """Record from the default input device until Ctrl+C."""
    from loopmix.models import RecordingOptions
    from loopmix.trackspec import parse_time_ms

    cfg, data_dir = _load_config()
    if max_duration is not None:
        try:
            max_duration_ms = parse_time_ms(max_duration)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--max-duration")
    else:
        max_duration_ms = cfg.recording.max_duration_ms

    options = RecordingOptions(
        format=fmt or cfg.recording.format,
        quality=cfg.recording.quality,
        sample_rate=sample_rate or cfg.recording.sample_rate,
        channels=channels or cfg.recording.channels,
        bit_rate=cfg.recording.bit_rate,
        max_duration_ms=max_duration_ms,
    )
    factory = _create_factory(ctx, cfg, data_dir)

    async def run():
        service = factory.get_service()
        finished = asyncio.Event()
        auto_stopped = []

        def on_auto_stop(track):
            auto_stopped.append(track)
            finished.set()

        service.on_auto_stop = on_auto_stop
        try:
            with _Interrupt() as interrupt:
                await service.start_recording(options, name=name)
                click.echo("Recording (Ctrl+C to stop)...")
                while service.is_recording() and not interrupt.requested:
                    led = click.style("●", fg="red", blink=True)
                    elapsed = _fmt_ms(service.get_recording_duration())
                    click.echo(f"\r  {led} REC {elapsed}", nl=False)
                    await asyncio.sleep(0.25)

                if service.is_recording():
                    track = await service.stop_recording()
                else:
                    try:
                        await asyncio.wait_for(finished.wait(), timeout=5)
                    except asyncio.TimeoutError:
                        raise click.ClickException("Recording stopped unexpectedly.")
                    track = auto_stopped[0]
            click.echo(f"\nRecording saved: {track.uri} ({track.duration_ms / 1000:.1f}s)")
        finally:
            await factory.cleanup()

    _run(ctx, run())


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--speed", type=float, default=None, help="Playback speed (0.05-2.50).")
@click.option("--volume", type=int, default=None, help="Volume (0-100).")
@click.option("--loop/--no-loop", default=None, help="Repeat until Ctrl+C.")
@click.pass_context
def play(ctx, path, speed, volume, loop):
    """Play an audio file with speed and volume applied."""
    from pathlib import Path

    from loopmix.models import PlaybackOptions, Track

    cfg, data_dir = _load_config()
    options = PlaybackOptions(
        speed=speed if speed is not None else cfg.playback.speed,
        volume=volume if volume is not None else cfg.playback.volume,
        loop=loop if loop is not None else cfg.playback.loop,
    )
    factory = _create_factory(ctx, cfg, data_dir)

    async def run():
        service = factory.get_service()
        track = service.add_track(Track(name=Path(path).stem, uri=path))
        try:
            await service.load_track(track.id, options)
            total = await service.get_track_duration(track.id)
            click.echo(f"Playing: {Path(path).name} ({_fmt_ms(total)})")
            with _Interrupt() as interrupt:
                await service.play_track(track.id)
                while not interrupt.requested:
                    position = await service.get_track_position(track.id)
                    if not service.is_track_playing(track.id):
                        break
                    frac = min(position / total, 1.0) if total > 0 else 0.0
                    filled = int(frac * 30)
                    bar = "█" * filled + "░" * (30 - filled)
                    play_icon = click.style("▶", fg="green")
                    click.echo(
                        f"\r  {play_icon} {_fmt_ms(position)}/{_fmt_ms(total)}  |{bar}|",
                        nl=False,
                    )
                    await asyncio.sleep(0.25)
            click.echo("\nStopped." if interrupt.requested else "")
        finally:
            await factory.cleanup()

    _run(ctx, run())


@main.command()
@click.argument("tracks", nargs=-1, required=True)
@click.option("--output", "-o", type=click.Path(), default=None, help="Output file path.")
@click.option("--format", "fmt", type=click.Choice(VALID_MIX_FORMATS), default=None,
              help="Output format.")
@click.option("--quality", type=click.Choice(VALID_QUALITIES), default=None,
              help="Bit rate preset.")
@click.option("--loops", type=click.IntRange(min=1), default=None,
              help="Repeat the whole mix this many times.")
@click.option("--fade-in", default=None, help="Fade-in length (e.g. 500ms, 2s).")
@click.option("--fadeout", default=None, help="Trailing fade-out length (e.g. 2s).")
@click.option("--crossfade", default=None,
              help="Fade length at the seams of repeated tracks (e.g. 50ms).")
@click.option("--sample-rate", type=int, default=None, help="Output sample rate in Hz.")
@click.option("--bit-rate", type=int, default=None, help="Output bit rate in kbps.")
@click.option("--channels", type=click.IntRange(1, 2), default=None, help="Output channels.")
@click.option("--normalize/--no-normalize", default=None, help="Let amix scale inputs down.")
@click.option("--dry-run", is_flag=True, help="Print the ffmpeg command instead of running it.")
@click.pass_context
def mix(ctx, tracks, output, fmt, quality, loops, fade_in, fadeout, crossfade, sample_rate,
        bit_rate, channels, normalize, dry_run):
    """Mix TRACKS into one file.

    Each track is PATH[,speed=X][,volume=N][,start=T][,duration=T].

    \b
    Examples:
      loopmix mix drums.wav bass.wav,volume=70
      loopmix mix vocals.m4a,speed=0.8 --loops 4 --fadeout 3s -o out.mp3
    """
    from loopmix.files import probe_duration_ms
    from loopmix.mixer.command import build_mix_job
    from loopmix.models import MixOptions
    from loopmix.paths import uri_to_path
    from loopmix.trackspec import parse_time_ms, parse_track_spec

    cfg, data_dir = _load_config()
    try:
        inputs = [parse_track_spec(spec) for spec in tracks]
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="TRACKS")
    try:
        fade_in_ms = parse_time_ms(fade_in) if fade_in else 0
        fadeout_ms = parse_time_ms(fadeout) if fadeout else cfg.mixing.fadeout_duration_ms
        crossfade_ms = parse_time_ms(crossfade) if crossfade else cfg.mixing.crossfade_ms
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--fade-in/--fadeout/--crossfade")

    options = MixOptions(
        tracks=inputs,
        format=fmt or cfg.mixing.format,
        quality=quality or cfg.mixing.quality,
        sample_rate=sample_rate or cfg.mixing.sample_rate,
        bit_rate=bit_rate or cfg.mixing.bit_rate or None,
        channels=channels or cfg.mixing.channels,
        normalize=normalize if normalize is not None else cfg.mixing.normalize,
        fade_in_ms=fade_in_ms,
        loop_count=loops or cfg.mixing.loop_count,
        fadeout_duration_ms=fadeout_ms,
        crossfade_ms=crossfade_ms,
        output_path=output,
    )

    if dry_run:
        try:
            durations = [probe_duration_ms(uri_to_path(t.uri)) for t in options.tracks]
            job = build_mix_job(options.tracks, options, durations)
        except AudioError as e:
            raise click.ClickException(e.user_message)
        target = output or f"mix.{job.output.format}"
        click.echo(shlex.join(job.to_args(target, binary=cfg.mixing.ffmpeg_path or "ffmpeg")))
        return

    def on_progress(progress):
        filled = int(progress.ratio * 30)
        bar = "█" * filled + "░" * (30 - filled)
        click.echo(f"\r  Mixing |{bar}| {progress.ratio * 100:3.0f}%", nl=False)

    options.on_progress = on_progress
    factory = _create_factory(ctx, cfg, data_dir)

    async def run():
        service = factory.get_service()
        try:
            with _Interrupt() as interrupt:
                task = asyncio.ensure_future(service.mix_tracks(options))
                cancelled = False
                while not task.done():
                    if interrupt.requested and not cancelled and service.is_mixing():
                        cancelled = True
                        await service.cancel_mixing()
                    await asyncio.wait({task}, timeout=0.1)
                result = task.result()
            click.echo(f"\nMix saved: {result.output_uri} ({result.actual_format})")
        finally:
            await factory.cleanup()

    _run(ctx, run())


@main.command()
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--list", "list_all", is_flag=True, help="Show all configuration values.")
@click.option("--path", "show_path", is_flag=True, help="Show the config file location.")
def config(key, value, list_all, show_path):
    """View or set configuration."""
    from loopmix.paths import get_config_path

    cfg, data_dir = _load_config()
    config_path = get_config_path(data_dir)

    if show_path:
        click.echo(config_path)
        return

    if list_all or (key is None and value is None):
        for section_name, section_dict in cfg._to_dict().items():
            for k, v in section_dict.items():
                click.echo(f"{section_name}.{k} = {v!r}")
        return

    if value is None:
        try:
            click.echo(cfg.get(key))
        except KeyError as e:
            raise click.ClickException(str(e))
        return

    try:
        cfg.set(key, value)
    except (KeyError, ValueError) as e:
        raise click.ClickException(str(e))
    cfg.save(config_path)
    click.echo(f"Set {key} = {cfg.get(key)!r}")
