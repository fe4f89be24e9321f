"""
============================================================================
APPWATCH - UTILITIES PACKAGE
============================================================================
    • logger       — loguru setup, MonitorLogger, AlertLogger
    • helpers      — TimeHelper, RetryPolicy / retry_async, RateLimiter
    • validators   — URL, email and alert-config validation

============================================================================
"""
