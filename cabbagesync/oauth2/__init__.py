"""OAuth2 credentials, token lifecycle and calendar provider adapters."""
