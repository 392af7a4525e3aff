import uvicorn

from filedrop.config import settings


def main() -> None:
    # Session locks live in process memory, so the service runs as a single worker.
    uvicorn.run("filedrop.main:app", host=settings.host, port=settings.port, workers=1)


if __name__ == "__main__":
    main()
