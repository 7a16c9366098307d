"""Shared constants and defaults."""

APP_NAME = "loopmix"

MIN_SPEED = 0.05
MAX_SPEED = 2.50
MIN_VOLUME = 0
MAX_VOLUME = 100

DEFAULT_SPEED = 1.0
DEFAULT_VOLUME = 100
DEFAULT_LOOPING = True

DEFAULT_SAMPLE_RATE = 44100
DEFAULT_CHANNELS = 2
DEFAULT_BIT_RATE = 128
MIN_SAMPLE_RATE = 8000
MIN_BIT_RATE = 32

DEFAULT_MIX_FORMAT = "mp3"
DEFAULT_RECORDING_FORMAT = "wav"
DEFAULT_QUALITY = "high"
DEFAULT_RUNTIME = "desktop"
DEFAULT_MAX_CONCURRENT_PLAYERS = 10

# Seconds between progress callbacks during a mix.
PROGRESS_INTERVAL = 0.1

VALID_FORMATS = ("mp3", "wav", "m4a", "3gpp")
VALID_MIX_FORMATS = ("mp3", "wav", "m4a")
VALID_QUALITIES = ("low", "medium", "high")
VALID_RUNTIMES = ("desktop", "mock")
AUDIO_EXTENSIONS = (".mp3", ".wav", ".m4a", ".3gp", ".3gpp", ".aac", ".ogg", ".flac")
