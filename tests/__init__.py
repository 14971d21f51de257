"""Tests for the ShareFeed server."""
