"""loopmix: record, import and mix audio tracks."""

__version__ = "0.1.0"
