"""Convenience runner for the FreightPower Demand API."""

import uvicorn

from apps.demand.settings import settings


def main():
    uvicorn.run(
        "apps.demand.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=True,
        reload_dirs=["apps"],
    )


if __name__ == "__main__":
    main()
