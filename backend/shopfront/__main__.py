import logging
import os
import sys

from .app import create_app
from .errors import StoreUnavailableError

log = logging.getLogger("shopfront")


def main():
    try:
        app = create_app()
    except StoreUnavailableError as exc:
        log.critical("Giving up on startup: %s", exc)
        sys.exit(1)

    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
