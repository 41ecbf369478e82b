"""Tests for the BlueZ Tracker integration."""
