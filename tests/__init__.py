"""Tests for the issue calendar linker."""
