"""Module entrypoint for ``python -m hachiko``."""

from __future__ import annotations

from hachiko.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
