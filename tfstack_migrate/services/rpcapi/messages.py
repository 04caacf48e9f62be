"""Protobuf message types for the subset of the Terraform RPC API used for state conversion.

The classes are built at import time from descriptor protos in a private
descriptor pool, so no generated ``_pb2`` modules are shipped. Field numbers
follow the Terraform ``terraform1`` and ``tfstacksagent1`` protocol definitions.
Fields not declared here are kept as unknown fields and survive re-serialization.
"""

from google.protobuf import any_pb2, descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "terraform1"
AGENT_PACKAGE = "tfstacksagent1"

_F = descriptor_pb2.FieldDescriptorProto

# gRPC method paths
HANDSHAKE = "/terraform1.setup.Setup/Handshake"
OPEN_SOURCE_BUNDLE = "/terraform1.dependencies.Dependencies/OpenSourceBundle"
CLOSE_SOURCE_BUNDLE = "/terraform1.dependencies.Dependencies/CloseSourceBundle"
OPEN_DEPENDENCY_LOCK_FILE = "/terraform1.dependencies.Dependencies/OpenDependencyLockFile"
CLOSE_DEPENDENCY_LOCKS = "/terraform1.dependencies.Dependencies/CloseDependencyLocks"
OPEN_PROVIDER_PLUGIN_CACHE = "/terraform1.dependencies.Dependencies/OpenProviderPluginCache"
CLOSE_PROVIDER_PLUGIN_CACHE = "/terraform1.dependencies.Dependencies/CloseProviderPluginCache"
OPEN_STACK_CONFIGURATION = "/terraform1.stacks.Stacks/OpenStackConfiguration"
CLOSE_STACK_CONFIGURATION = "/terraform1.stacks.Stacks/CloseStackConfiguration"
OPEN_TERRAFORM_STATE = "/terraform1.stacks.Stacks/OpenTerraformState"
CLOSE_TERRAFORM_STATE = "/terraform1.stacks.Stacks/CloseTerraformState"
MIGRATE_TERRAFORM_STATE = "/terraform1.stacks.Stacks/MigrateTerraformState"

# Diagnostic.Severity values
SEVERITY_INVALID = 0
SEVERITY_ERROR = 1
SEVERITY_WARNING = 2


def _add_field(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    field_type: int,
    *,
    repeated: bool = False,
    type_name: str | None = None,
    oneof_index: int | None = None,
) -> None:
    field = message.field.add()
    field.name = name
    field.number = number
    field.type = field_type
    field.label = _F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL
    if type_name:
        field.type_name = type_name
    if oneof_index is not None:
        field.oneof_index = oneof_index


def _add_map_field(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    value_type: int,
    value_type_name: str | None = None,
    *,
    full_name: str,
) -> None:
    """Declare ``map<string, V> name = number`` on a message."""
    entry_name = "".join(part.title() for part in name.split("_")) + "Entry"
    entry = message.nested_type.add()
    entry.name = entry_name
    entry.options.map_entry = True
    _add_field(entry, "key", 1, _F.TYPE_STRING)
    _add_field(entry, "value", 2, value_type, type_name=value_type_name)
    _add_field(message, name, number, _F.TYPE_MESSAGE, repeated=True, type_name=f".{full_name}.{entry_name}")


def _handle_messages(
    file_proto: descriptor_pb2.FileDescriptorProto,
    name: str,
    handle_field: str,
) -> None:
    """Declare ``<name>Response{<handle>=1, diagnostics=2}``."""
    response = file_proto.message_type.add(name=f"{name}Response")
    _add_field(response, handle_field, 1, _F.TYPE_INT64)
    _add_field(response, "diagnostics", 2, _F.TYPE_MESSAGE, repeated=True, type_name=f".{PACKAGE}.Diagnostic")


def _build_rpc_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="tfstack_migrate/terraform1_subset.proto",
        package=PACKAGE,
        syntax="proto3",
    )
    file_proto.dependency.append("google/protobuf/any.proto")

    # Diagnostic
    diagnostic = file_proto.message_type.add(name="Diagnostic")
    severity = diagnostic.enum_type.add(name="Severity")
    for value_name, value in (("INVALID", SEVERITY_INVALID), ("ERROR", SEVERITY_ERROR), ("WARNING", SEVERITY_WARNING)):
        severity.value.add(name=value_name, number=value)
    _add_field(diagnostic, "severity", 1, _F.TYPE_ENUM, type_name=f".{PACKAGE}.Diagnostic.Severity")
    _add_field(diagnostic, "summary", 2, _F.TYPE_STRING)
    _add_field(diagnostic, "detail", 3, _F.TYPE_STRING)

    source_address = file_proto.message_type.add(name="SourceAddress")
    _add_field(source_address, "source", 1, _F.TYPE_STRING)

    file_proto.message_type.add(name="Empty")

    # Setup
    file_proto.message_type.add(name="HandshakeRequest")
    file_proto.message_type.add(name="HandshakeResponse")

    # Dependencies
    open_bundle = file_proto.message_type.add(name="OpenSourceBundleRequest")
    _add_field(open_bundle, "local_path", 1, _F.TYPE_STRING)
    _handle_messages(file_proto, "OpenSourceBundle", "source_bundle_handle")
    close_bundle = file_proto.message_type.add(name="CloseSourceBundleRequest")
    _add_field(close_bundle, "source_bundle_handle", 1, _F.TYPE_INT64)

    open_locks = file_proto.message_type.add(name="OpenDependencyLockFileRequest")
    _add_field(open_locks, "source_bundle_handle", 1, _F.TYPE_INT64)
    _add_field(open_locks, "source_address", 2, _F.TYPE_MESSAGE, type_name=f".{PACKAGE}.SourceAddress")
    _handle_messages(file_proto, "OpenDependencyLockFile", "dependency_locks_handle")
    close_locks = file_proto.message_type.add(name="CloseDependencyLocksRequest")
    _add_field(close_locks, "dependency_locks_handle", 1, _F.TYPE_INT64)

    open_cache = file_proto.message_type.add(name="OpenProviderPluginCacheRequest")
    _add_field(open_cache, "cache_dir", 1, _F.TYPE_STRING)
    _add_field(open_cache, "override_platform", 2, _F.TYPE_STRING)
    _handle_messages(file_proto, "OpenProviderPluginCache", "provider_cache_handle")
    close_cache = file_proto.message_type.add(name="CloseProviderPluginCacheRequest")
    _add_field(close_cache, "provider_cache_handle", 1, _F.TYPE_INT64)

    # Stacks
    open_config = file_proto.message_type.add(name="OpenStackConfigurationRequest")
    _add_field(open_config, "source_bundle_handle", 1, _F.TYPE_INT64)
    _add_field(open_config, "source_address", 2, _F.TYPE_MESSAGE, type_name=f".{PACKAGE}.SourceAddress")
    _handle_messages(file_proto, "OpenStackConfiguration", "stack_config_handle")
    close_config = file_proto.message_type.add(name="CloseStackConfigurationRequest")
    _add_field(close_config, "stack_config_handle", 1, _F.TYPE_INT64)

    open_state = file_proto.message_type.add(name="OpenTerraformStateRequest")
    open_state.oneof_decl.add(name="state")
    _add_field(open_state, "config_path", 1, _F.TYPE_STRING, oneof_index=0)
    _add_field(open_state, "raw", 2, _F.TYPE_BYTES, oneof_index=0)
    _handle_messages(file_proto, "OpenTerraformState", "state_handle")
    close_state = file_proto.message_type.add(name="CloseTerraformStateRequest")
    _add_field(close_state, "state_handle", 1, _F.TYPE_INT64)

    # AppliedChange
    applied_change = file_proto.message_type.add(name="AppliedChange")
    raw_change = applied_change.nested_type.add(name="RawChange")
    _add_field(raw_change, "key", 1, _F.TYPE_STRING)
    _add_field(raw_change, "value", 2, _F.TYPE_MESSAGE, type_name=".google.protobuf.Any")
    description = applied_change.nested_type.add(name="ChangeDescription")
    _add_field(description, "key", 1, _F.TYPE_STRING)
    _add_field(applied_change, "raw", 1, _F.TYPE_MESSAGE, repeated=True, type_name=f".{PACKAGE}.AppliedChange.RawChange")
    _add_field(
        applied_change,
        "descriptions",
        2,
        _F.TYPE_MESSAGE,
        repeated=True,
        type_name=f".{PACKAGE}.AppliedChange.ChangeDescription",
    )

    # MigrateTerraformState
    mapping = file_proto.message_type.add(name="MigrationMapping")
    _add_map_field(mapping, "resource_address_map", 1, _F.TYPE_STRING, full_name=f"{PACKAGE}.MigrationMapping")
    _add_map_field(mapping, "module_address_map", 2, _F.TYPE_STRING, full_name=f"{PACKAGE}.MigrationMapping")

    migrate = file_proto.message_type.add(name="MigrateTerraformStateRequest")
    migrate.oneof_decl.add(name="mapping")
    _add_field(migrate, "state_handle", 1, _F.TYPE_INT64)
    _add_field(migrate, "config_handle", 2, _F.TYPE_INT64)
    _add_field(migrate, "dependency_locks_handle", 3, _F.TYPE_INT64)
    _add_field(migrate, "provider_cache_handle", 4, _F.TYPE_INT64)
    _add_field(migrate, "simple", 5, _F.TYPE_MESSAGE, type_name=f".{PACKAGE}.MigrationMapping", oneof_index=0)

    event = file_proto.message_type.add(name="MigrateTerraformStateEvent")
    event.oneof_decl.add(name="result")
    _add_field(event, "diagnostic", 1, _F.TYPE_MESSAGE, type_name=f".{PACKAGE}.Diagnostic", oneof_index=0)
    _add_field(event, "applied_change", 2, _F.TYPE_MESSAGE, type_name=f".{PACKAGE}.AppliedChange", oneof_index=0)

    return file_proto


def _build_agent_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="tfstack_migrate/tfstacksagent1_subset.proto",
        package=AGENT_PACKAGE,
        syntax="proto3",
    )
    file_proto.dependency.extend(["google/protobuf/any.proto", "tfstack_migrate/terraform1_subset.proto"])

    stack_state = file_proto.message_type.add(name="StackState")
    full_name = f"{AGENT_PACKAGE}.StackState"
    _add_field(stack_state, "format_version", 1, _F.TYPE_INT64)
    _add_map_field(stack_state, "raw", 2, _F.TYPE_MESSAGE, ".google.protobuf.Any", full_name=full_name)
    _add_map_field(
        stack_state,
        "descriptions",
        3,
        _F.TYPE_MESSAGE,
        f".{PACKAGE}.AppliedChange.ChangeDescription",
        full_name=full_name,
    )
    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(any_pb2.DESCRIPTOR.serialized_pb)
_pool.AddSerializedFile(_build_rpc_file().SerializeToString())
_pool.AddSerializedFile(_build_agent_file().SerializeToString())


def _message(full_name: str):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(full_name))


Diagnostic = _message(f"{PACKAGE}.Diagnostic")
SourceAddress = _message(f"{PACKAGE}.SourceAddress")
Empty = _message(f"{PACKAGE}.Empty")
HandshakeRequest = _message(f"{PACKAGE}.HandshakeRequest")
HandshakeResponse = _message(f"{PACKAGE}.HandshakeResponse")
OpenSourceBundleRequest = _message(f"{PACKAGE}.OpenSourceBundleRequest")
OpenSourceBundleResponse = _message(f"{PACKAGE}.OpenSourceBundleResponse")
CloseSourceBundleRequest = _message(f"{PACKAGE}.CloseSourceBundleRequest")
OpenDependencyLockFileRequest = _message(f"{PACKAGE}.OpenDependencyLockFileRequest")
OpenDependencyLockFileResponse = _message(f"{PACKAGE}.OpenDependencyLockFileResponse")
CloseDependencyLocksRequest = _message(f"{PACKAGE}.CloseDependencyLocksRequest")
OpenProviderPluginCacheRequest = _message(f"{PACKAGE}.OpenProviderPluginCacheRequest")
OpenProviderPluginCacheResponse = _message(f"{PACKAGE}.OpenProviderPluginCacheResponse")
CloseProviderPluginCacheRequest = _message(f"{PACKAGE}.CloseProviderPluginCacheRequest")
OpenStackConfigurationRequest = _message(f"{PACKAGE}.OpenStackConfigurationRequest")
OpenStackConfigurationResponse = _message(f"{PACKAGE}.OpenStackConfigurationResponse")
CloseStackConfigurationRequest = _message(f"{PACKAGE}.CloseStackConfigurationRequest")
OpenTerraformStateRequest = _message(f"{PACKAGE}.OpenTerraformStateRequest")
OpenTerraformStateResponse = _message(f"{PACKAGE}.OpenTerraformStateResponse")
CloseTerraformStateRequest = _message(f"{PACKAGE}.CloseTerraformStateRequest")
AppliedChange = _message(f"{PACKAGE}.AppliedChange")
MigrationMapping = _message(f"{PACKAGE}.MigrationMapping")
MigrateTerraformStateRequest = _message(f"{PACKAGE}.MigrateTerraformStateRequest")
MigrateTerraformStateEvent = _message(f"{PACKAGE}.MigrateTerraformStateEvent")
StackState = _message(f"{AGENT_PACKAGE}.StackState")
