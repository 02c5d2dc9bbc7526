"""
channels — Per-channel delivery providers.

Each provider exposes:
    async send(params) → SendResult
    is_available()     → bool
    get_name()         → str

Providers never raise from send(). Fallback between providers lives in
base.FallbackProvider; simulation mode lives in the dispatcher.
"""
