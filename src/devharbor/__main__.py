"""Module entrypoint for `python -m devharbor`."""

from devharbor.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
