"""Test suite for the meta-analysis engine.

This package contains unit tests covering harmonization, fixed-effect
aggregation, REML estimation, random-effects inference and influence
diagnostics. To run the tests, execute `pytest` from the project root.
"""
