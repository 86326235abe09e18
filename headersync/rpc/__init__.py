"""DAPI JSON-RPC client and header server."""
