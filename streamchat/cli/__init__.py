"""Command-line shell for streamchat."""
