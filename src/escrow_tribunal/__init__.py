"""Escrow Tribunal - two-tier dispute resolution over escrowed funds."""

__version__ = "0.1.0"
