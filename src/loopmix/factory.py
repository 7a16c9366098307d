"""Runtime selection and lifecycle of the composed AudioService."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from loopmix.config import LoopmixConfig
from loopmix.constants import DEFAULT_MAX_CONCURRENT_PLAYERS, DEFAULT_RUNTIME
from loopmix.errors import AudioError, AudioErrorKind, wrap
from loopmix.files import FileManager, InMemoryFileManager, LocalFileManager
from loopmix.mixer.service import Mixer
from loopmix.paths import get_data_dir, get_mixes_dir, get_recordings_dir
from loopmix.player.base import Player
from loopmix.recorder.base import Recorder
from loopmix.service import AudioService

logger = logging.getLogger(__name__)


@dataclass
class ServiceBundle:
    """Zero-argument constructors for one runtime's implementations."""

    recorder: Callable[[], Recorder]
    player: Callable[[], Player]
    mixer: Callable[[], Mixer]
    file_manager: Callable[[], FileManager]
    max_concurrent_players: int = DEFAULT_MAX_CONCURRENT_PLAYERS


class AudioServiceFactory:
    """Holds one registered bundle and at most one memoized AudioService.

    Pass the factory to whatever needs the service; there is no module-level
    instance.
    """

    def __init__(self):
        self._runtime: Optional[str] = None
        self._bundle: Optional[ServiceBundle] = None
        self._service: Optional[AudioService] = None

    @property
    def runtime(self) -> Optional[str]:
        return self._runtime

    def register_services(self, runtime: str, bundle: ServiceBundle) -> None:
        """Make *bundle* the active implementation set.

        Registering the same bundle again is a no-op. A different bundle
        replaces the current one and drops the memoized service without
        tearing it down; call :meth:`cleanup` first for a graceful switch.
        """
        if self._runtime == runtime and self._bundle is bundle:
            return
        if self._service is not None:
            logger.warning(
                "Replacing %s services while a service instance exists", self._runtime
            )
        self._runtime = runtime
        self._bundle = bundle
        self._service = None
        logger.debug("Registered %s audio services", runtime)

    def has_services_registered(self) -> bool:
        return self._bundle is not None

    def is_service_initialized(self) -> bool:
        return self._service is not None

    def create_service(self) -> AudioService:
        """Build a new AudioService from the registered bundle. Not memoized."""
        bundle = self._bundle
        if bundle is None:
            raise AudioError(
                AudioErrorKind.RESOURCE_UNAVAILABLE,
                "No audio services registered",
                "Audio services are not available on this platform",
            )
        try:
            return AudioService(
                recorder=bundle.recorder(),
                player_factory=bundle.player,
                mixer=bundle.mixer(),
                file_manager=bundle.file_manager(),
                max_concurrent_players=bundle.max_concurrent_players,
            )
        except Exception as exc:
            raise wrap(
                exc, AudioErrorKind.UNKNOWN_ERROR, "Failed to create audio service",
                runtime=self._runtime,
            ) from exc

    def get_service(self) -> AudioService:
        if self._service is None:
            self._service = self.create_service()
            logger.info("Created %s audio service", self._runtime)
        return self._service

    async def cleanup(self) -> None:
        """Tear down the memoized service. Safe to call repeatedly."""
        service, self._service = self._service, None
        if service is not None:
            await service.cleanup()

    def reset(self) -> None:
        """Forget the service and the registration without tearing anything down."""
        self._service = None
        self._bundle = None
        self._runtime = None


def desktop_bundle(config: LoopmixConfig, data_dir: Path) -> ServiceBundle:
    from loopmix.mixer.ffmpeg_engine import FfmpegMixEngine
    from loopmix.player.ffplay_player import FfplayPlayerBackend
    from loopmix.recorder.sounddevice_recorder import SounddeviceRecorderBackend

    return ServiceBundle(
        recorder=lambda: Recorder(SounddeviceRecorderBackend(get_recordings_dir(data_dir))),
        player=lambda: Player(FfplayPlayerBackend(config.mixing.ffplay_path)),
        mixer=lambda: Mixer(FfmpegMixEngine(config.mixing.ffmpeg_path), get_mixes_dir(data_dir)),
        file_manager=lambda: LocalFileManager(data_dir),
        max_concurrent_players=config.mixing.max_concurrent_players,
    )


def mock_bundle(config: LoopmixConfig, data_dir: Path) -> ServiceBundle:
    """No audio hardware, no external binaries. Files live in memory or tmp."""
    from loopmix.mixer.mock_engine import MockMixEngine
    from loopmix.player.mock_player import MockPlayerBackend
    from loopmix.recorder.mock_recorder import MockRecorderBackend

    return ServiceBundle(
        recorder=lambda: Recorder(MockRecorderBackend()),
        player=lambda: Player(MockPlayerBackend()),
        mixer=lambda: Mixer(MockMixEngine()),
        file_manager=InMemoryFileManager,
        max_concurrent_players=config.mixing.max_concurrent_players,
    )


RUNTIME_BUNDLES: dict[str, Callable[[LoopmixConfig, Path], ServiceBundle]] = {
    "desktop": desktop_bundle,
    "mock": mock_bundle,
}


def detect_runtime(config: Optional[LoopmixConfig] = None) -> str:
    """LOOPMIX_RUNTIME env var > config runtime.name > desktop."""
    name = os.environ.get("LOOPMIX_RUNTIME")
    if not name and config is not None:
        name = config.runtime.name
    name = name or DEFAULT_RUNTIME
    if name not in RUNTIME_BUNDLES:
        raise AudioError(
            AudioErrorKind.RESOURCE_UNAVAILABLE,
            f"Unknown runtime {name!r}. Choose from: {', '.join(RUNTIME_BUNDLES)}",
            "Audio services are not available on this platform",
        )
    return name


def build_bundle(
    runtime: str,
    config: Optional[LoopmixConfig] = None,
    data_dir: Optional[Path] = None,
) -> ServiceBundle:
    builder = RUNTIME_BUNDLES.get(runtime)
    if builder is None:
        raise AudioError(
            AudioErrorKind.RESOURCE_UNAVAILABLE,
            f"Unknown runtime {runtime!r}. Choose from: {', '.join(RUNTIME_BUNDLES)}",
            "Audio services are not available on this platform",
        )
    config = config or LoopmixConfig()
    data_dir = data_dir or get_data_dir(config.storage.data_dir)
    return builder(config, data_dir)


def create_factory(
    runtime: Optional[str] = None,
    config: Optional[LoopmixConfig] = None,
    data_dir: Optional[Path] = None,
) -> AudioServiceFactory:
    """A factory with the bundle for *runtime* (detected when omitted) registered."""
    config = config or LoopmixConfig()
    runtime = runtime or detect_runtime(config)
    factory = AudioServiceFactory()
    factory.register_services(runtime, build_bundle(runtime, config, data_dir))
    return factory
