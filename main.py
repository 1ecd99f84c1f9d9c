"""
Production entrypoint for the listing pipeline API.

Binds to 0.0.0.0:$PORT.
"""

import uvicorn

from utils.config import Config

if __name__ == "__main__":
    config = Config.load()
    config.configure_logging()
    print(f"Starting Listing Pipeline API on port {config.port}")

    # Import app here to ensure clean module loading
    from web.app import app

    uvicorn.run(app, host="0.0.0.0", port=config.port)
