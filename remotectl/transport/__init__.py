"""Wire framing, signing, timestamp and nonce helpers."""
