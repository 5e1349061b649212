"""HTTP interface for EdgeLedger."""

from edgeledger.web.app import create_app

__all__ = ["create_app"]
