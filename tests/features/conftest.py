"""Shared fixtures for BDD feature tests.

Scenarios provision their own database per test, so this module only marks
the package boundary for pytest-bdd step discovery.
"""

from __future__ import annotations
