"""Authentication: API keys, OAuth handshake and identity federation."""
