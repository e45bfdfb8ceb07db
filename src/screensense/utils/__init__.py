"""Utility helpers for ScreenSense."""
