"""
Run the API and the worker in one process.
"""

import sys

from jobqueue.bootstrap import main


def run() -> None:
    """Run the API server and the worker."""
    sys.exit(main(api=True, worker=True))


if __name__ == "__main__":
    run()
