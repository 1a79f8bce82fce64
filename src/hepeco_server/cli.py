import asyncio

import uvicorn

from hepeco_server.config import settings


def main():
    uvicorn.run("hepeco_server.main:app", host=settings.HOST, port=settings.PORT, log_level="info")


def export():
    from hepeco_server.export_client import main as export_main

    asyncio.run(export_main())


if __name__ == "__main__":
    main()
