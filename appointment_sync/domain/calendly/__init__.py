"""
Calendly domain - OAuth connection, polling sync and webhook intake

Routers live in router.py (connection, sync, webhook registration) and
webhooks_router.py (inbound Calendly events); main.py imports them directly.
"""
