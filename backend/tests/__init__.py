"""
Test Suite

This module contains all tests for the ticket automation engine.

Structure:
    tests/
    ├── __init__.py           # This file
    ├── conftest.py           # Pytest fixtures (in-memory stores, wired container)
    └── unit/                 # Unit tests
        ├── __init__.py
        ├── test_domain/      # Models, triggers, errors
        ├── test_engine/      # Evaluator, executor, engines, recurrence
        ├── test_repositories/# In-memory and MongoDB stores
        ├── test_services/    # Rule and schedule services, adapters
        └── test_utils/       # Utility tests

To run tests:
    pytest
    pytest backend/tests/unit/test_engine
"""
