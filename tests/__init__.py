"""Test package for nhl-pickem."""
