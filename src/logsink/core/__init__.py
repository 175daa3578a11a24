"""
Core business logic components.

This package contains the per-application actor subsystem:
- Config store adapter for <appname>.json records
- Log file manager (open, flush, rotate, close)
- Application worker (config cache, auth, writes)
- Dispatcher (appname -> worker routing, eviction)
- Health checks and metrics collection
"""
