"""ScreenSense - a searchable semantic index of what is on screen."""

__version__ = "0.1.0"
