"""Exceptions raised by the sprite sheet pipeline."""


class DecodeError(ValueError):
    """An input buffer could not be parsed as an image."""


class InvalidInputError(ValueError):
    """Arguments that cannot produce an output (zero frames, non-positive sizes, empty sheet)."""


class GenerationError(RuntimeError):
    """The image model answered without an image."""
