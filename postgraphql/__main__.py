"""
`python -m postgraphql`: run the environment-configured server with uvicorn.
"""

import uvicorn

from postgraphql.core import settings


def main() -> None:
    uvicorn.run(
        "postgraphql.main:app",
        host=settings.server_host(),
        port=settings.server_port(),
        log_level=settings.log_level().lower(),
    )


if __name__ == "__main__":
    main()
