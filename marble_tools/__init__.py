"""Wplace area capture and template color filter tools."""
