import uvicorn

from ratekeeper.core.app_factory import create_app

app = create_app()


if __name__ == "__main__":
    uvicorn.run("ratekeeper.main:app", host="127.0.0.1", port=8000)
