# src/__init__.py — v1
"""Stronghold — resumable multi-phase audit orchestrator."""
