"""Command-line interface for workload-attestor."""
