from __future__ import annotations

from elanvital.app import create_app

# uvicorn main:app
app = create_app()
