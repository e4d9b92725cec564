"""
Entry point for running the chat service with uvicorn.

Health and metrics requests are filtered out of the access log.
"""

import logging

import uvicorn

from chathub.uvicorn_filters import ExcludeMetricsFilter


def main() -> None:
    logging.getLogger("uvicorn.access").addFilter(ExcludeMetricsFilter())
    uvicorn.run("chathub:application", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
