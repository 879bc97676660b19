"""
Core utilities for the adaptive testing engine.
"""
