"""Clients for the messaging automation gateway."""
