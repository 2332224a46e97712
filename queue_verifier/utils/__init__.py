"""Timestamp helpers and the injectable verification history store."""
