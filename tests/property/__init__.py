# tests/property/__init__.py
"""Property-based tests for ilastik-bridge.

Property-based testing validates invariants that must hold for ALL inputs,
not just the specific examples we think of.

Test categories:
- core/: Axis conversion, scratch file naming
- engine/: Command construction, invocation lifecycle
"""
