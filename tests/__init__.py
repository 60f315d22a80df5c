"""Test package for the media generation job service."""
