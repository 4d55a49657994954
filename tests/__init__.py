"""Test suite for FormVault.

This package contains tests for:
- Answer validation rules and messages
- Field materialization and form structure checks
- Document store contract, run against the flat-file and SQL backends
- Form and submission repositories (versioning, reordering, uploads, export)
- Sanitizer, settings, events and the FormVault facade
"""
