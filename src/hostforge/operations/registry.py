"""
Registry key and value operations.

Values are typed (see :mod:`hostforge.core.models`); an update keeps the
stored kind and only changes the payload. Every write is read back.
"""

from __future__ import annotations

from typing import Any

from hostforge.core.config import HostForgeConfig
from hostforge.core.models import (
    ExpandableTextValue,
    RegistryKeyInfo,
    RegistryValue,
    RegistryValueRecord,
    ValueKind,
    ValueUpdate,
    registry_value,
)
from hostforge.core.result import (
    OperationResult,
    PreconditionError,
    UnsupportedOperation,
    ValidationError,
    VerificationError,
    operation,
    require,
)
from hostforge.core.safety import SafetyPolicy
from hostforge.operations.base import OperationGroup
from hostforge.platform.base import RegistryStore
from hostforge.platform.paths import RegistryPath, parse_registry_path

DEFAULT_VALUE_LABEL = "(default)"


def _value_name(name: str | None) -> str:
    """``""`` and ``(default)`` both address the key's default value."""
    if name is None:
        raise ValidationError("Parameter 'name' is required")
    if name.strip().lower() == DEFAULT_VALUE_LABEL:
        return ""
    return name


def _display_name(name: str) -> str:
    return name or DEFAULT_VALUE_LABEL


def _native(value: RegistryValue) -> Any:
    if value.kind is ValueKind.MULTI_STRING:
        return list(value.payload)
    return value.payload


class RegistryOperations(OperationGroup):
    """CRUD over registry keys and typed values."""

    logger_name = "hostforge.operations.registry"

    def __init__(self, store: RegistryStore, config: HostForgeConfig | None = None) -> None:
        super().__init__(config)
        self.store = store
        self.safety = SafetyPolicy(self.config.safety)

    def _exists(self, key: RegistryPath) -> bool:
        return self.store.key_exists(key.hive, key.subkey)

    def _existing_key(self, path: str) -> RegistryPath:
        key = parse_registry_path(path)
        if not self._exists(key):
            raise PreconditionError(f"Registry key '{key}' does not exist")
        return key

    def _read(self, key: RegistryPath, name: str) -> RegistryValue:
        payload, kind = self.store.get_value(key.hive, key.subkey, name)
        try:
            return RegistryValue.from_stored(kind, payload)
        except ValueError as e:
            raise UnsupportedOperation(
                f"Value '{_display_name(name)}' under '{key}' has an unsupported type: {e}"
            ) from None

    def _read_existing(self, key: RegistryPath, name: str, hint: str) -> RegistryValue:
        try:
            return self._read(key, name)
        except FileNotFoundError:
            raise PreconditionError(
                f"Value '{_display_name(name)}' does not exist under '{key}'{hint}"
            ) from None

    def _write(self, key: RegistryPath, name: str, value: RegistryValue) -> RegistryValue:
        self.store.set_value(key.hive, key.subkey, name, _native(value), value.kind.value)
        stored = self._read(key, name)
        if not stored.same_payload(value):
            raise VerificationError(
                f"Value '{_display_name(name)}' under '{key}' reads back as {stored.payload!r}, "
                f"expected {value.payload!r}"
            )
        return stored

    # ==================== Keys ====================

    @operation("create_key")
    def create_key(self, path: str, name: str) -> OperationResult[RegistryKeyInfo]:
        """Create ``name`` under ``path``; the parent must exist and the key must not."""
        require(path=path, name=name)
        key = parse_registry_path(path).child(name)
        if not self._exists(key.parent):
            raise PreconditionError(f"Parent key '{key.parent}' does not exist")
        if self._exists(key):
            raise PreconditionError(f"Registry key '{key}' already exists")

        self.store.create_key(key.hive, key.subkey)
        if not self._exists(key):
            raise VerificationError(f"Registry key '{key}' was not created")
        self.logger.info("Created registry key", key=str(key))
        return OperationResult.ok(RegistryKeyInfo(str(key)))

    def _delete_tree(self, key: RegistryPath) -> None:
        for child in self.store.list_subkeys(key.hive, key.subkey):
            self._delete_tree(key.child(child))
        self.store.delete_key(key.hive, key.subkey)

    @operation("delete_key")
    def delete_key(self, path: str, *, recurse: bool = False) -> OperationResult[RegistryKeyInfo]:
        """Delete a key.

        Hive roots and protected system keys are always refused. Without
        ``recurse`` the key must have neither subkeys nor values.
        """
        require(path=path)
        key = parse_registry_path(path)
        self.safety.ensure_registry_key_allowed(key, "delete")
        if not self._exists(key):
            raise PreconditionError(f"Registry key '{key}' does not exist")

        subkeys = self.store.list_subkeys(key.hive, key.subkey)
        values = [_display_name(v) for v in self.store.list_values(key.hive, key.subkey)]
        if (subkeys or values) and not recurse:
            raise PreconditionError(
                f"Registry key '{key}' has {len(subkeys)} subkeys and {len(values)} values; "
                "pass recurse=True to delete them"
            )

        if recurse:
            self._delete_tree(key)
        else:
            self.store.delete_key(key.hive, key.subkey)

        if self._exists(key):
            raise VerificationError(f"Registry key '{key}' still exists after deletion")
        self.logger.info("Deleted registry key", key=str(key), recurse=recurse)
        return OperationResult.ok(RegistryKeyInfo(str(key), subkeys, values))

    @operation("list_key")
    def list_key(self, path: str) -> OperationResult[RegistryKeyInfo]:
        require(path=path)
        key = self._existing_key(path)
        subkeys = self.store.list_subkeys(key.hive, key.subkey)
        values = [_display_name(v) for v in self.store.list_values(key.hive, key.subkey)]
        return OperationResult.ok(RegistryKeyInfo(str(key), subkeys, values))

    # ==================== Values ====================

    @operation("create_value")
    def create_value(
        self,
        path: str,
        name: str,
        value: RegistryValue | Any,
        kind: ValueKind | str | None = None,
    ) -> OperationResult[RegistryValueRecord]:
        """Create a new value.

        ``value`` is a typed value such as ``DWordValue(1)``; alternatively a
        raw payload together with ``kind``, which is coerced the same way an
        update coerces to the stored kind.
        """
        require(path=path)
        name = _value_name(name)
        value = self._typed(value, kind)

        key = self._existing_key(path)
        if self.store.value_exists(key.hive, key.subkey, name):
            raise PreconditionError(
                f"Value '{_display_name(name)}' already exists under '{key}'; use update_value"
            )

        stored = self._write(key, name, value)
        self.logger.info("Created registry value", key=str(key), name=_display_name(name), kind=stored.kind.name)
        return OperationResult.ok(RegistryValueRecord(str(key), _display_name(name), stored))

    def _typed(self, value: Any, kind: ValueKind | str | None) -> RegistryValue:
        if value is None:
            raise ValidationError("Parameter 'value' is required")
        requested = None
        if kind is not None:
            try:
                requested = kind if isinstance(kind, ValueKind) else ValueKind.from_string(kind)
            except ValueError as e:
                raise ValidationError(str(e)) from None

        if isinstance(value, RegistryValue):
            if requested is not None and requested is not value.kind:
                raise ValidationError(f"Value is {value.kind.name} but kind {requested.name} was requested")
            return value
        if requested is None:
            raise ValidationError(
                "Parameter 'kind' is required when 'value' is not a typed registry value"
            )
        try:
            return registry_value(requested, value)
        except ValueError as e:
            raise ValidationError(str(e)) from None

    @operation("read_value")
    def read_value(
        self, path: str, name: str, *, expand: bool = False
    ) -> OperationResult[RegistryValueRecord]:
        """Read a value; ``expand`` only affects expandable strings."""
        require(path=path)
        name = _value_name(name)
        key = self._existing_key(path)
        value = self._read_existing(key, name, "")

        expanded = False
        if expand and value.kind is ValueKind.EXPAND_STRING:
            value = ExpandableTextValue(self.store.expand_environment(value.payload))
            expanded = True
        return OperationResult.ok(
            RegistryValueRecord(str(key), _display_name(name), value, expanded=expanded)
        )

    @operation("update_value")
    def update_value(self, path: str, name: str, payload: Any) -> OperationResult[ValueUpdate]:
        """Replace the payload of an existing value, keeping its kind.

        The previous payload is returned so the caller can undo the change.
        """
        require(path=path)
        name = _value_name(name)
        if payload is None:
            raise ValidationError("Parameter 'payload' is required")
        key = self._existing_key(path)
        old = self._read_existing(key, name, "; use create_value")

        if isinstance(payload, RegistryValue):
            if payload.kind is not old.kind:
                raise ValidationError(
                    f"Value '{_display_name(name)}' is {old.kind.name}; its kind cannot change to {payload.kind.name}"
                )
            new = payload
        else:
            try:
                new = registry_value(old.kind, payload)
            except ValueError as e:
                raise ValidationError(str(e)) from None

        stored = self._write(key, name, new)
        self.logger.info("Updated registry value", key=str(key), name=_display_name(name), kind=old.kind.name)
        return OperationResult.ok(ValueUpdate(str(key), _display_name(name), old, stored))

    @operation("delete_value")
    def delete_value(self, path: str, name: str) -> OperationResult[RegistryValueRecord]:
        require(path=path)
        name = _value_name(name)
        key = self._existing_key(path)
        old = self._read_existing(key, name, "")

        self.store.delete_value(key.hive, key.subkey, name)
        if self.store.value_exists(key.hive, key.subkey, name):
            raise VerificationError(f"Value '{_display_name(name)}' under '{key}' still exists after deletion")
        self.logger.info("Deleted registry value", key=str(key), name=_display_name(name))
        return OperationResult.ok(RegistryValueRecord(str(key), _display_name(name), old))
