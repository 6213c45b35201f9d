"""Orb Test Suite

Test organization:
- unit/: Unit tests for individual modules
  - constraints/: constraint model, stores, evaluator
  - modes/: mode service state machine
  - persona/: rule tables, classifier, overrides
  - learning/: learning actions and adaptive application
  - preferences/: profiles, presets, profile stores

Running tests:
    # All tests
    pytest

    # Specific module
    pytest tests/unit/constraints/
"""
