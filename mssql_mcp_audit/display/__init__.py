"""Diagnostic output helpers."""
