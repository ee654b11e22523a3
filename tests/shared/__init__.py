"""Shared testing utilities for the Nexus storage tests.

This package contains reusable testing components:
- fake_gcs.py: In-memory google-cloud-storage client with failure injection
"""
