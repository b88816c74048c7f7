"""Adapters for the external text-generation service."""
