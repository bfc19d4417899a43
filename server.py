#!/usr/bin/env python3
"""
Local entrypoint.

The application lives under `presale_app/`; settings come from `PRESALE_*`
environment variables or `.env`. Use `python3 server.py`, or
`uvicorn presale_app.main:create_app --factory`.
"""

from presale_app.main import run


if __name__ == "__main__":
    run()
