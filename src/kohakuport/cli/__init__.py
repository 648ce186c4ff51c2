"""Command line interface for KohakuPort."""
