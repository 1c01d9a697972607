"""Main module for lfsgate."""

import logging
import sys

import uvicorn

from lfsgate.exceptions import MissingConfiguration
from lfsgate.server import get_argparser, create_application

logger = logging.getLogger("server")


def main():
    """Main entry point for the CLI."""
    # If no arguments provided, automatically add --from-env
    if len(sys.argv) == 1:
        sys.argv.append("--from-env")

    arg_parser = get_argparser()
    opt = arg_parser.parse_args()
    try:
        app = create_application(opt)
    except MissingConfiguration as err:
        logger.error(f"Unable to start Git LFS server: {err}")
        sys.exit(1)

    # lifespan="on" makes a failed bucket probe stop the process
    uvicorn.run(app, host=opt.host, port=int(opt.port), lifespan="on")


if __name__ == "__main__":
    main()
