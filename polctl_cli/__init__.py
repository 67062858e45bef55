"""polctl command-line interface."""
