"""
alerts — Emergency dispatch for panic and QR-access events.

Sub-modules:
    channels/       — Per-channel providers (SMS, WhatsApp, Email) + fallback
    dispatcher      — Per-recipient multi-channel fan-out with simulation mode
    panic_service   — Panic alert orchestration: search, persist, notify, publish
    access_service  — QR emergency-access notifications
    broadcaster     — Real-time event publishing (in-memory / Redis)
    repository      — Store contracts + in-memory implementations
    sql_repository  — SQLAlchemy implementations of the stores
    models          — Data structures shared across the system
"""
