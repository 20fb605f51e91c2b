"""Development entry point for running the vantage dashboard service."""

import os
import sys
from vantage.app import create_app
from dotenv import load_dotenv

if getattr(sys, "frozen", False):
    load_dotenv(os.path.join(sys._MEIPASS, ".env"))
else:
    load_dotenv()

app = create_app()

if __name__ == "__main__":
    app.run(host=os.getenv("VANTAGE_HOST", "127.0.0.1"), port=int(os.getenv("VANTAGE_PORT", "5000")))
