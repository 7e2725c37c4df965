# FILE: phylopath/__main__.py
# =============================================================================
# phylopath
# Package Entrypoint — enables `python -m phylopath` to launch the CLI.
#
#     python -m phylopath --help
#     python -m phylopath run -c configs/example.yaml
#     python -m phylopath effective-config -c configs/example.yaml
#
# All logging and config resolution lives in `phylopath.cli`.
# =============================================================================

from __future__ import annotations

import sys


def _run() -> int:
    """
    Import and invoke the Typer CLI entrypoint.

    Returns
    -------
    int
        Process exit code (0 on success).
    """
    # Typer/rich are only needed for the CLI, not for `import phylopath`.
    from phylopath.cli import main as _cli_main

    _cli_main()
    return 0


if __name__ == "__main__":
    sys.exit(_run())
