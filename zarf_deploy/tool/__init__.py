"""Command line tool for zarf-deploy."""
