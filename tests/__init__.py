"""Test suite for scrna-workshop.

Test organization:
- fixtures/: Mock data generators and test utilities
- unit/: Unit tests for individual modules

Run tests with:
    pytest tests/
    pytest tests/unit/ -m "not slow"
    pytest tests/ -v --tb=short
"""
