"""CLI command implementations (each returns a process exit code)."""
