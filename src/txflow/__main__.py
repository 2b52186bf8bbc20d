import uvicorn

from txflow.config import cfg


def main():
    service = cfg["service"]
    uvicorn.run("txflow.app:app", host=service["host"], port=int(service["port"]), lifespan="on")


if __name__ == "__main__":
    main()
