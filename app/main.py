"""
HTTP entrypoint for the Pod Budget Assistant

Run locally with:
    uvicorn app.main:app --reload
or:
    python -m app.main

The assistant only ever proposes. Budgets change when the client calls
the apply endpoint with action ids the user confirmed.
"""

import structlog
import uvicorn

from budgetpods.api import create_app
from budgetpods.config import validate_all_settings


logger = structlog.get_logger(__name__)

app = create_app()


@app.on_event("startup")
def log_settings_check() -> None:
    """Report which settings sections loaded, without failing startup."""
    logger.info("settings_check", **validate_all_settings())


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=False)
