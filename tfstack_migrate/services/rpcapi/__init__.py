"""
Terraform RPC API client for workspace to stack state conversion.

Modules:
- messages: Protobuf message types built from descriptor protos
- client: Child process lifetime, handshake and scoped handles
- converter: Event accumulation into stack state and temp-file handling
"""

from .client import (
    AppliedChangeEvent,
    DiagnosticEvent,
    HandshakeInfo,
    TerraformRPCClient,
    parse_handshake,
)
from .converter import StackStateAccumulator, StateConverter, relative_source, stack_state_file

__all__ = [
    "AppliedChangeEvent",
    "DiagnosticEvent",
    "HandshakeInfo",
    "TerraformRPCClient",
    "parse_handshake",
    "StackStateAccumulator",
    "StateConverter",
    "relative_source",
    "stack_state_file",
]
