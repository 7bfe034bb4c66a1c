"""Bridging services: polling scheduler and inbound router."""
