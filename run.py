"""Run API Service.
"""

import uvicorn
from extreg import api_app
from extreg.settings import config


if __name__ == "__main__":
    uvicorn.run(
        api_app,
        host=config.host, port=config.port
    )
