"""Command line entry points for digestcat."""
