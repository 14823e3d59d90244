"""Conversion daemon transports."""
