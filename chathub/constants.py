"""
Application-level constants for hardcoded protocol behavior.

These values represent core application behavior and should NEVER be changed
via environment variables or configuration.

For configurable values (queue sizes, timeouts, message limits, etc.),
see chathub/settings.py where values can be overridden via environment
variables.
"""

# ============================================================================
# WebSocket Protocol Constants (RFC 6455 close codes)
# ============================================================================

# Normal closure, used for client-initiated and orderly closes
WS_NORMAL_CLOSURE_CODE = 1000

# Server is shutting down
WS_GOING_AWAY_CODE = 1001

# Authentication rejection and backpressure eviction
WS_POLICY_VIOLATION_CODE = 1008

# Unexpected server-side failure, including transport errors on send
WS_INTERNAL_ERROR_CODE = 1011

# Close reasons are limited to 123 bytes by the protocol
WS_CLOSE_REASON_MAX_BYTES = 123


# ============================================================================
# Logging
# ============================================================================

# Loki rejects entries above this size; longer messages are truncated
LOKI_MAX_LOG_SIZE_BYTES = 256 * 1024
