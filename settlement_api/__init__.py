"""HTTP surface of the settlement kernel."""

from settlement_api.app import create_app

__all__ = ["create_app"]
