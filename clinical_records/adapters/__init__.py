"""Adapters layer for Clinical-Records.

This module contains adapters that implement the Port interfaces defined in the
domain layer: storage, privilege checks, permission filtering and validation.
"""
