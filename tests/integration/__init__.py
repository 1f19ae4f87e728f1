"""Integration test package.

These tests exercise the end-to-end behaviour of the pipeline, from a
CSV extraction sheet through the CLI to the JSON result records.
"""
