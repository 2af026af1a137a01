"""Routers: health, metrics, rpc (capability protocol) and sync trigger."""
