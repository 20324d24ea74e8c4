"""Test suite for the formruntime form engine.

This package contains tests for:
- Schema loading and structural validation
- Expression evaluation (conditional rules, calculated fields)
- Field value store and repeatable section bookkeeping
- Validation engine (required, pattern, length, bounds, files, cross-field)
- Rendering and accessibility of the element tree
- Lifecycle state machine and event stream
- Submission controller and connectors
- End-to-end runtime scenarios
"""
