# =============================================================================
# fgm/cli/__init__.py: CLI Package
# =============================================================================
#
# The command-line front end.  Everything lives in main.py: the argparse
# parser, one async handler per subcommand, and run()/main() which map
# API-layer exceptions to exit codes and one-line messages.
#
# Handlers never build their own cache or client; run() constructs one of
# each per invocation via fgm.main and passes them in, so every request
# in a batch command shares the same rate limiter and cache.
# =============================================================================

"""Command-line interface for fgm (``fgm`` console script)."""
