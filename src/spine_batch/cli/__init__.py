"""spine-batch command-line interface."""
