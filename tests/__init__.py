"""MediMate test suite."""
