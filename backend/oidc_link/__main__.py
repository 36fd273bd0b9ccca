"""
Run the service: `python -m oidc_link`
"""

import uvicorn

from oidc_link.core.settings import settings


def main() -> None:
    uvicorn.run(
        "oidc_link.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        # LoggingMiddleware logs every request with the link token redacted
        access_log=False,
    )


if __name__ == "__main__":
    main()
