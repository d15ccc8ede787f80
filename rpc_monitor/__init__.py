"""RPC fleet monitor — health aggregation engine + query API."""
