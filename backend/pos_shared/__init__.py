"""
Shared infrastructure for the POS backend: configuration, logging,
local/remote store connections, notification publishing and error types.
"""
