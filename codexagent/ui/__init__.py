from .colors import colorize, strip_ansi

__all__ = ["colorize", "strip_ansi"]
