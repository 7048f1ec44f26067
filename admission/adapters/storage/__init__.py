"""Metadata and blob stores backing the per-owner item capacity."""
