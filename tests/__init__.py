"""Tests for pqbms."""
