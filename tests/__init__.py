"""
Test package marker.

Lets pytest import tests as a package (e.g. `tests.test_dispatch`).
"""
