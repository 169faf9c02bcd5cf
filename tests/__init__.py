"""
Tests Package.

This package contains test suites for the expectation propagation core,
including unit tests for schedule construction, type inference and the
message catalog, and integration tests for algorithm execution on small
factor graphs.
"""

# Tests Package
