import os

import uvicorn

from relman.api import app


if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("RELMAN_HOST", "0.0.0.0"), port=int(os.getenv("RELMAN_PORT", "8000")))
