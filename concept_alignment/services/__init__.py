"""Run persistence and background run management."""
