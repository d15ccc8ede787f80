from rpc_monitor.endpoints.registry import (
    DEFAULT_EXTERNAL_ENDPOINTS,
    EndpointDescriptor,
    EndpointRegistry,
    ExternalEndpointDescriptor,
    SlotField,
    apply_api_key,
    derive_ws_url,
)

__all__ = [
    "DEFAULT_EXTERNAL_ENDPOINTS",
    "EndpointDescriptor",
    "EndpointRegistry",
    "ExternalEndpointDescriptor",
    "SlotField",
    "apply_api_key",
    "derive_ws_url",
]
