# FILE: causal_search/__main__.py
# =============================================================================
# Causal Search Engine (CSE)
# Package Entrypoint: enables `python -m causal_search` to launch the CLI.
#
#   python -m causal_search --help
#   python -m causal_search full-run -c configs/search.yaml
#   python -m causal_search search data.csv --algorithm grasp --num-starts 4
# =============================================================================

from __future__ import annotations

import sys


def _run() -> int:
    from causal_search.cli import main as _cli_main

    _cli_main()
    return 0


if __name__ == "__main__":
    sys.exit(_run())
