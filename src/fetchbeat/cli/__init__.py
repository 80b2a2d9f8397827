"""Command line interface (``fetchbeat``)."""
