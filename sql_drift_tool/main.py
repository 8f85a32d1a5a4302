import sys

from sql_drift_tool.cli.compare_cli import main


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
