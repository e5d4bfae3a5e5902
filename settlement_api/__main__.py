"""
Run the settlement API with uvicorn.

    python -m settlement_api

Host and port come from HOST / PORT; everything else from the settlement
settings (SETTLEMENT_* environment variables or SETTLEMENT_CONFIG file).
"""

import os

import uvicorn

from settlement_api.app import create_app


def main() -> None:
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        create_app(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
