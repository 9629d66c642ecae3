"""
Agent Relay Bridge

Relays chat messages from WebSocket clients to an external agent
processor and reconciles its asynchronous answers with the connections
that asked for them.

Components:
- normalizer: Canonical envelope from heterogeneous result payloads
- registry: Thread id -> live connection registry
- jobs: Outstanding job table and the exactly-once resolved claim
- poller: Bounded fallback status polling
- webhooks: Completion callback receiver
- dispatcher: Outbound job trigger and webhook timeout
- bridge: Owner wiring the pieces together
- api: Client socket protocol
"""

from .main import app

__version__ = "0.1.0"
