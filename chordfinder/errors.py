"""Exception types raised by chordfinder."""


class ChordFinderError(Exception):
    """Base class for every failure raised on purpose by this package."""


class ConfigurationError(ChordFinderError, ValueError):
    """
    Raised when a parameter, recipe or input signal cannot be processed.

    Always raised before the first frame is computed, so a run either starts
    with a consistent configuration or does not start at all.
    """


class ChordParseError(ChordFinderError, ValueError):
    """Raised by the strict chord and suffix parsers for unrecognised text."""
