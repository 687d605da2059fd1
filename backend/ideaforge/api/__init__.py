"""Idea Forge HTTP API."""
