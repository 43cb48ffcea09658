"""
notice_relay: relays work between WebSocket clients and HTTP/webhook APIs.

Components:
- tasks/: task models, store, lifecycle engine, webhook ingestor, polling loop
- connectors/: admission control, connection registry, outbound HTTP, FastAPI transport
- core/: ports and application state
- cli/: composition root and entrypoint
"""

__version__ = "0.1.0"
