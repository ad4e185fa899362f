"""
Rodent Error Taxonomy

Maps numeric error codes to (domain, message, HTTP status) and provides the
RodentError exception carried by every failure in the control plane.

Error code ranges:
    1000-1099: Configuration
    1100-1199: Server
    1300-1399: Command execution
    1400-1499: Health check
    1500-1599: Lifecycle management
    1600-1699: Rodent (misc)
    2000-2999: ZFS operations
"""

import json
from datetime import datetime, timezone
from enum import Enum, IntEnum
from http import HTTPStatus
from types import MappingProxyType
from typing import Any, Dict, Mapping, NamedTuple, Optional


class Domain(str, Enum):
    """Subsystem where an error originated."""
    CONFIG = "CONFIG"
    SERVER = "SERVER"
    ZFS = "ZFS"
    COMMAND = "CMD"
    HEALTH = "HEALTH"
    LIFECYCLE = "LIFECYCLE"


UNKNOWN_DOMAIN = "UNKNOWN"


class ErrorCode(IntEnum):
    # Configuration (1000-1099)
    CONFIG_NOT_FOUND = 1000
    CONFIG_INVALID = 1001
    CONFIG_LOAD_FAILED = 1002
    CONFIG_WRITE_FAILED = 1003
    CONFIG_PERMISSION_DENIED = 1004
    CONFIG_DIRECTORY_ERROR = 1005
    CONFIG_VALIDATION_FAILED = 1006
    CONFIG_MARSHAL_FAILED = 1007
    CONFIG_UNMARSHAL_FAILED = 1008
    CONFIG_HOME_DIRECTORY_ERROR = 1009

    # Server (1100-1199)
    SERVER_START = 1100
    SERVER_SHUTDOWN = 1101
    SERVER_BIND = 1102
    SERVER_TIMEOUT = 1103
    SERVER_MIDDLEWARE = 1104
    SERVER_ROUTING = 1105
    SERVER_REQUEST_VALIDATION = 1106
    SERVER_RESPONSE_ERROR = 1107
    SERVER_CONTEXT_CANCELLED = 1108
    SERVER_TLS_ERROR = 1109

    # Command execution (1300-1399)
    CMD_NOT_FOUND = 1300
    CMD_EXECUTION = 1301
    CMD_TIMEOUT = 1302
    CMD_PERMISSION = 1303
    CMD_INVALID_INPUT = 1304
    CMD_OUTPUT_PARSE = 1305
    CMD_SIGNAL = 1306
    CMD_CONTEXT = 1307
    CMD_PIPE = 1308
    CMD_WORK_DIR = 1309

    # Health check (1400-1499)
    HEALTH_CHECK_FAILED = 1400
    HEALTH_CHECK_TIMEOUT = 1401
    HEALTH_CHECK_COMPONENT = 1402
    HEALTH_CHECK_CONFIG = 1403
    HEALTH_CHECK_ENDPOINT = 1404
    HEALTH_CHECK_CLIENT = 1405
    HEALTH_CHECK_VALIDATION = 1406
    HEALTH_CHECK_THRESHOLD = 1407
    HEALTH_CHECK_STATE = 1408
    HEALTH_CHECK_RECOVERY = 1409

    # Lifecycle (1500-1599)
    LIFECYCLE_PID = 1500
    LIFECYCLE_SHUTDOWN = 1501
    LIFECYCLE_SIGNAL = 1502
    LIFECYCLE_RELOAD = 1503
    LIFECYCLE_HOOK = 1504
    LIFECYCLE_STATE = 1505
    LIFECYCLE_LOCK = 1506
    LIFECYCLE_CLEANUP = 1507
    LIFECYCLE_DAEMON = 1508
    LIFECYCLE_RESOURCE = 1509

    # Misc (1600-1699)
    RODENT_MISC = 1600

    # ZFS (2000-2999)
    ZFS_COMMAND_FAILED = 2000
    ZFS_POOL_NOT_FOUND = 2001
    ZFS_PERMISSION_DENIED = 2002
    ZFS_PROPERTY_ERROR = 2003
    ZFS_PROPERTY_VALUE_TOO_LONG = 2004
    ZFS_INVALID_PROPERTY_VALUE = 2005
    ZFS_MOUNT_ERROR = 2006
    ZFS_INVALID_MOUNT_POINT = 2007
    ZFS_RESTRICTED_MOUNT_POINT = 2008
    ZFS_CLONE_ERROR = 2009
    ZFS_QUOTA_ERROR = 2010
    ZFS_IO_ERROR = 2011
    ZFS_INVALID_SIZE = 2012
    ZFS_QUOTA_EXCEEDED = 2013
    ZFS_QUOTA_INVALID = 2014
    ZFS_PERMISSION_ERROR = 2015

    ZFS_NAME_LEADING_SLASH = 2016
    ZFS_NAME_EMPTY_COMPONENT = 2017
    ZFS_NAME_TRAILING_SLASH = 2018
    ZFS_NAME_INVALID_CHAR = 2019
    ZFS_NAME_MULTIPLE_DELIMITERS = 2020
    ZFS_NAME_NO_LETTER = 2021
    ZFS_NAME_RESERVED = 2022
    ZFS_NAME_DISK_LIKE = 2023
    ZFS_NAME_TOO_LONG = 2024
    ZFS_NAME_SELF_REF = 2025
    ZFS_NAME_PARENT_REF = 2026
    ZFS_NAME_NO_AT_SIGN = 2027
    ZFS_NAME_NO_POUND = 2028
    ZFS_NAME_INVALID = 2029

    ZFS_DATASET_NOT_FOUND = 2030
    ZFS_DATASET_CREATE = 2031
    ZFS_DATASET_LIST = 2032
    ZFS_DATASET_DESTROY = 2033
    ZFS_DATASET_GET_PROPERTY = 2034
    ZFS_DATASET_SET_PROPERTY = 2035
    ZFS_DATASET_PROPERTY_NOT_FOUND = 2036
    ZFS_DATASET_CLONE = 2037
    ZFS_DATASET_INVALID_NAME = 2038
    ZFS_DATASET_INVALID_PROPERTY = 2039
    ZFS_DATASET_RENAME = 2040
    ZFS_DATASET_SNAPSHOT = 2041
    ZFS_DATASET_OPERATION = 2042

    ZFS_DATASET_SEND = 2043
    ZFS_DATASET_RECEIVE = 2044
    ZFS_DATASET_NO_RECEIVE_TOKEN = 2045

    ZFS_SNAPSHOT_LIST = 2046
    ZFS_SNAPSHOT_DESTROY = 2047
    ZFS_SNAPSHOT_ROLLBACK = 2048
    ZFS_SNAPSHOT_FAILED = 2049
    ZFS_SNAPSHOT_INVALID_NAME = 2050
    ZFS_SNAPSHOT_INVALID_PROPERTY = 2051

    ZFS_BOOKMARK_FAILED = 2052
    ZFS_BOOKMARK_INVALID_NAME = 2053
    ZFS_BOOKMARK_INVALID_PROPERTY = 2054

    ZFS_CLONE_PROMOTE_FAILED = 2055
    ZFS_MOUNT_OPERATION_FAILED = 2056
    ZFS_UNMOUNT_OPERATION_FAILED = 2057
    ZFS_POOL_SCRUB_FAILED = 2058
    ZFS_POOL_RESILVER_FAILED = 2059

    ZFS_VOLUME_OPERATION_FAILED = 2060

    ZFS_POOL_CREATE = 2061
    ZFS_POOL_IMPORT = 2062
    ZFS_POOL_EXPORT = 2063
    ZFS_POOL_STATUS = 2064
    ZFS_POOL_LIST = 2065
    ZFS_POOL_DESTROY = 2066
    ZFS_POOL_GET_PROPERTY = 2067
    ZFS_POOL_SET_PROPERTY = 2068
    ZFS_POOL_PROPERTY_NOT_FOUND = 2069
    ZFS_POOL_INVALID_NAME = 2070
    ZFS_POOL_INVALID_DEVICE = 2071
    ZFS_POOL_DEVICE_OPERATION = 2072
    ZFS_POOL_TOO_MANY_DEVICES = 2073
    ZFS_POOL_RESTRICTED_DEVICE = 2074


class ErrorDefinition(NamedTuple):
    message: str
    domain: str
    http_status: int


_C = ErrorCode
_S = HTTPStatus

_DEFINITIONS: Dict[int, ErrorDefinition] = {
    # Configuration errors
    _C.CONFIG_NOT_FOUND: ErrorDefinition("Configuration file not found", Domain.CONFIG, _S.NOT_FOUND),
    _C.CONFIG_INVALID: ErrorDefinition("Invalid configuration format", Domain.CONFIG, _S.BAD_REQUEST),
    _C.CONFIG_LOAD_FAILED: ErrorDefinition("Failed to load configuration", Domain.CONFIG, _S.INTERNAL_SERVER_ERROR),
    _C.CONFIG_WRITE_FAILED: ErrorDefinition("Failed to write configuration", Domain.CONFIG, _S.INTERNAL_SERVER_ERROR),
    _C.CONFIG_PERMISSION_DENIED: ErrorDefinition("Permission denied accessing config", Domain.CONFIG, _S.FORBIDDEN),
    _C.CONFIG_DIRECTORY_ERROR: ErrorDefinition("Config directory error", Domain.CONFIG, _S.INTERNAL_SERVER_ERROR),
    _C.CONFIG_VALIDATION_FAILED: ErrorDefinition("Configuration validation failed", Domain.CONFIG, _S.BAD_REQUEST),
    _C.CONFIG_MARSHAL_FAILED: ErrorDefinition("Failed to serialize configuration", Domain.CONFIG, _S.INTERNAL_SERVER_ERROR),
    _C.CONFIG_UNMARSHAL_FAILED: ErrorDefinition("Failed to deserialize configuration", Domain.CONFIG, _S.INTERNAL_SERVER_ERROR),
    _C.CONFIG_HOME_DIRECTORY_ERROR: ErrorDefinition("Failed to get home directory", Domain.CONFIG, _S.INTERNAL_SERVER_ERROR),

    # Server errors
    _C.SERVER_START: ErrorDefinition("Failed to start server", Domain.SERVER, _S.INTERNAL_SERVER_ERROR),
    _C.SERVER_SHUTDOWN: ErrorDefinition("Error during server shutdown", Domain.SERVER, _S.INTERNAL_SERVER_ERROR),
    _C.SERVER_BIND: ErrorDefinition("Failed to bind server port", Domain.SERVER, _S.INTERNAL_SERVER_ERROR),
    _C.SERVER_TIMEOUT: ErrorDefinition("Server operation timed out", Domain.SERVER, _S.GATEWAY_TIMEOUT),
    _C.SERVER_MIDDLEWARE: ErrorDefinition("Middleware execution failed", Domain.SERVER, _S.INTERNAL_SERVER_ERROR),
    _C.SERVER_ROUTING: ErrorDefinition("Route handling error", Domain.SERVER, _S.INTERNAL_SERVER_ERROR),
    _C.SERVER_REQUEST_VALIDATION: ErrorDefinition("Request validation failed", Domain.SERVER, _S.BAD_REQUEST),
    _C.SERVER_RESPONSE_ERROR: ErrorDefinition("Error generating response", Domain.SERVER, _S.INTERNAL_SERVER_ERROR),
    _C.SERVER_CONTEXT_CANCELLED: ErrorDefinition("Server context cancelled", Domain.SERVER, _S.SERVICE_UNAVAILABLE),
    _C.SERVER_TLS_ERROR: ErrorDefinition("TLS configuration error", Domain.SERVER, _S.INTERNAL_SERVER_ERROR),

    # Command execution errors
    _C.CMD_NOT_FOUND: ErrorDefinition("Command not found", Domain.COMMAND, _S.NOT_FOUND),
    _C.CMD_EXECUTION: ErrorDefinition("Command execution failed", Domain.COMMAND, _S.BAD_REQUEST),
    _C.CMD_TIMEOUT: ErrorDefinition("Command execution timed out", Domain.COMMAND, _S.GATEWAY_TIMEOUT),
    _C.CMD_PERMISSION: ErrorDefinition("Permission denied executing command", Domain.COMMAND, _S.FORBIDDEN),
    _C.CMD_INVALID_INPUT: ErrorDefinition("Invalid command input", Domain.COMMAND, _S.BAD_REQUEST),
    _C.CMD_OUTPUT_PARSE: ErrorDefinition("Failed to parse command output", Domain.COMMAND, _S.INTERNAL_SERVER_ERROR),
    _C.CMD_SIGNAL: ErrorDefinition("Command signal handling failed", Domain.COMMAND, _S.INTERNAL_SERVER_ERROR),
    _C.CMD_CONTEXT: ErrorDefinition("Command context error", Domain.COMMAND, _S.INTERNAL_SERVER_ERROR),
    _C.CMD_PIPE: ErrorDefinition("Command pipe operation failed", Domain.COMMAND, _S.INTERNAL_SERVER_ERROR),
    _C.CMD_WORK_DIR: ErrorDefinition("Working directory error", Domain.COMMAND, _S.INTERNAL_SERVER_ERROR),

    # Health check errors
    _C.HEALTH_CHECK_FAILED: ErrorDefinition("Health check failed", Domain.HEALTH, _S.SERVICE_UNAVAILABLE),
    _C.HEALTH_CHECK_TIMEOUT: ErrorDefinition("Health check timed out", Domain.HEALTH, _S.GATEWAY_TIMEOUT),
    _C.HEALTH_CHECK_COMPONENT: ErrorDefinition("Component health check failed", Domain.HEALTH, _S.SERVICE_UNAVAILABLE),
    _C.HEALTH_CHECK_CONFIG: ErrorDefinition("Health check configuration error", Domain.HEALTH, _S.INTERNAL_SERVER_ERROR),
    _C.HEALTH_CHECK_ENDPOINT: ErrorDefinition("Health check endpoint error", Domain.HEALTH, _S.SERVICE_UNAVAILABLE),
    _C.HEALTH_CHECK_CLIENT: ErrorDefinition("Health check client error", Domain.HEALTH, _S.INTERNAL_SERVER_ERROR),
    _C.HEALTH_CHECK_VALIDATION: ErrorDefinition("Health check validation failed", Domain.HEALTH, _S.BAD_REQUEST),
    _C.HEALTH_CHECK_THRESHOLD: ErrorDefinition("Health check threshold exceeded", Domain.HEALTH, _S.SERVICE_UNAVAILABLE),
    _C.HEALTH_CHECK_STATE: ErrorDefinition("Health check state error", Domain.HEALTH, _S.INTERNAL_SERVER_ERROR),
    _C.HEALTH_CHECK_RECOVERY: ErrorDefinition("Health check recovery failed", Domain.HEALTH, _S.INTERNAL_SERVER_ERROR),

    # Lifecycle errors
    _C.LIFECYCLE_PID: ErrorDefinition("PID file operation failed", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),
    _C.LIFECYCLE_SHUTDOWN: ErrorDefinition("Error during shutdown process", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),
    _C.LIFECYCLE_SIGNAL: ErrorDefinition("Signal handling error", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),
    _C.LIFECYCLE_RELOAD: ErrorDefinition("Configuration reload failed", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),
    _C.LIFECYCLE_HOOK: ErrorDefinition("Lifecycle hook execution failed", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),
    _C.LIFECYCLE_STATE: ErrorDefinition("Invalid lifecycle state transition", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),
    _C.LIFECYCLE_LOCK: ErrorDefinition("Failed to acquire lifecycle lock", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),
    _C.LIFECYCLE_CLEANUP: ErrorDefinition("Lifecycle cleanup failed", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),
    _C.LIFECYCLE_DAEMON: ErrorDefinition("Daemon operation failed", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),
    _C.LIFECYCLE_RESOURCE: ErrorDefinition("Resource management error", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),

    _C.RODENT_MISC: ErrorDefinition("Miscellaneous program error", Domain.LIFECYCLE, _S.INTERNAL_SERVER_ERROR),

    # ZFS errors
    _C.ZFS_COMMAND_FAILED: ErrorDefinition("ZFS command execution failed", Domain.ZFS, _S.INTERNAL_SERVER_ERROR),
    _C.ZFS_POOL_NOT_FOUND: ErrorDefinition("ZFS pool not found", Domain.ZFS, _S.NOT_FOUND),
    _C.ZFS_PERMISSION_DENIED: ErrorDefinition("Permission denied for ZFS operation", Domain.ZFS, _S.FORBIDDEN),
    _C.ZFS_PROPERTY_ERROR: ErrorDefinition("ZFS property operation failed", Domain.ZFS, _S.INTERNAL_SERVER_ERROR),
    _C.ZFS_PROPERTY_VALUE_TOO_LONG: ErrorDefinition("ZFS property value too long", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_INVALID_PROPERTY_VALUE: ErrorDefinition("ZFS invalid property value", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_MOUNT_ERROR: ErrorDefinition("ZFS mount operation failed", Domain.ZFS, _S.INTERNAL_SERVER_ERROR),
    _C.ZFS_INVALID_MOUNT_POINT: ErrorDefinition("Invalid mount point", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_RESTRICTED_MOUNT_POINT: ErrorDefinition("Mount point not allowed", Domain.ZFS, _S.FORBIDDEN),
    _C.ZFS_CLONE_ERROR: ErrorDefinition("ZFS clone operation failed", Domain.ZFS, _S.INTERNAL_SERVER_ERROR),
    _C.ZFS_QUOTA_ERROR: ErrorDefinition("ZFS quota operation failed", Domain.ZFS, _S.INTERNAL_SERVER_ERROR),
    _C.ZFS_IO_ERROR: ErrorDefinition("ZFS I/O operation failed", Domain.ZFS, _S.INTERNAL_SERVER_ERROR),
    _C.ZFS_INVALID_SIZE: ErrorDefinition("Invalid size specified", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_QUOTA_EXCEEDED: ErrorDefinition("Dataset quota exceeded", Domain.ZFS, _S.FORBIDDEN),
    _C.ZFS_QUOTA_INVALID: ErrorDefinition("ZFS invalid quota", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_PERMISSION_ERROR: ErrorDefinition("Permission denied for ZFS operation", Domain.ZFS, _S.FORBIDDEN),

    _C.ZFS_NAME_LEADING_SLASH: ErrorDefinition("Leading slash in name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_EMPTY_COMPONENT: ErrorDefinition("Empty component in name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_TRAILING_SLASH: ErrorDefinition("Trailing slash in name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_INVALID_CHAR: ErrorDefinition("Invalid character in name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_MULTIPLE_DELIMITERS: ErrorDefinition("Multiple delimiters in name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_NO_LETTER: ErrorDefinition("Name must begin with a letter", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_RESERVED: ErrorDefinition("Name is reserved", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_DISK_LIKE: ErrorDefinition("Reserved disk name (c[0-9].*)", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_TOO_LONG: ErrorDefinition("Name is too long", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_SELF_REF: ErrorDefinition("Name is self reference", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_PARENT_REF: ErrorDefinition("Name is parent reference", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_NO_AT_SIGN: ErrorDefinition("Missing '@' in snapshot name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_NO_POUND: ErrorDefinition("Missing '#' in bookmark name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_NAME_INVALID: ErrorDefinition("Invalid name", Domain.ZFS, _S.BAD_REQUEST),

    _C.ZFS_DATASET_NOT_FOUND: ErrorDefinition("ZFS dataset not found", Domain.ZFS, _S.NOT_FOUND),
    _C.ZFS_DATASET_CREATE: ErrorDefinition("Failed to create ZFS dataset", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_LIST: ErrorDefinition("Failed to list ZFS datasets", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_DESTROY: ErrorDefinition("Failed to destroy ZFS dataset", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_GET_PROPERTY: ErrorDefinition("Failed to get dataset property", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_SET_PROPERTY: ErrorDefinition("Failed to set dataset property", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_PROPERTY_NOT_FOUND: ErrorDefinition("Dataset property not found", Domain.ZFS, _S.NOT_FOUND),
    _C.ZFS_DATASET_CLONE: ErrorDefinition("Failed to clone dataset", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_INVALID_NAME: ErrorDefinition("Invalid dataset name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_INVALID_PROPERTY: ErrorDefinition("Invalid property value", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_RENAME: ErrorDefinition("Failed to rename dataset", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_SNAPSHOT: ErrorDefinition("Failed to create snapshot", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_OPERATION: ErrorDefinition("Failed to perform dataset operation", Domain.ZFS, _S.BAD_REQUEST),

    _C.ZFS_DATASET_SEND: ErrorDefinition("Failed to send dataset", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_RECEIVE: ErrorDefinition("Failed to receive dataset", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_DATASET_NO_RECEIVE_TOKEN: ErrorDefinition("No receive resume token", Domain.ZFS, _S.NOT_FOUND),

    _C.ZFS_SNAPSHOT_LIST: ErrorDefinition("Failed to list snapshots", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_SNAPSHOT_DESTROY: ErrorDefinition("Failed to destroy snapshot", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_SNAPSHOT_ROLLBACK: ErrorDefinition("Failed to rollback snapshot", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_SNAPSHOT_FAILED: ErrorDefinition("Failed to create/manage snapshot", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_SNAPSHOT_INVALID_NAME: ErrorDefinition("Invalid snapshot name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_SNAPSHOT_INVALID_PROPERTY: ErrorDefinition("Invalid snapshot property value", Domain.ZFS, _S.BAD_REQUEST),

    _C.ZFS_BOOKMARK_FAILED: ErrorDefinition("Failed to create/list bookmark", Domain.ZFS, _S.INTERNAL_SERVER_ERROR),
    _C.ZFS_BOOKMARK_INVALID_NAME: ErrorDefinition("Invalid bookmark name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_BOOKMARK_INVALID_PROPERTY: ErrorDefinition("Invalid bookmark property value", Domain.ZFS, _S.BAD_REQUEST),

    _C.ZFS_CLONE_PROMOTE_FAILED: ErrorDefinition("Failed to promote clone", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_MOUNT_OPERATION_FAILED: ErrorDefinition("Failed to mount dataset", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_UNMOUNT_OPERATION_FAILED: ErrorDefinition("Failed to unmount dataset", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_SCRUB_FAILED: ErrorDefinition("Failed to scrub pool", Domain.ZFS, _S.INTERNAL_SERVER_ERROR),
    _C.ZFS_POOL_RESILVER_FAILED: ErrorDefinition("Failed to resilver pool", Domain.ZFS, _S.INTERNAL_SERVER_ERROR),

    _C.ZFS_VOLUME_OPERATION_FAILED: ErrorDefinition("Failed to perform volume operation", Domain.ZFS, _S.BAD_REQUEST),

    _C.ZFS_POOL_CREATE: ErrorDefinition("Failed to create ZFS pool", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_IMPORT: ErrorDefinition("Failed to import ZFS pool", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_EXPORT: ErrorDefinition("Failed to export ZFS pool", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_STATUS: ErrorDefinition("Failed to get pool status", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_LIST: ErrorDefinition("Failed to get pool list", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_DESTROY: ErrorDefinition("Failed to destroy pool", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_GET_PROPERTY: ErrorDefinition("Failed to get pool property", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_SET_PROPERTY: ErrorDefinition("Failed to set pool property", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_PROPERTY_NOT_FOUND: ErrorDefinition("Pool property not found", Domain.ZFS, _S.NOT_FOUND),
    _C.ZFS_POOL_INVALID_NAME: ErrorDefinition("Invalid pool name", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_INVALID_DEVICE: ErrorDefinition("Invalid device", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_DEVICE_OPERATION: ErrorDefinition("Failed to perform zpool device operation", Domain.ZFS, _S.BAD_REQUEST),
    _C.ZFS_POOL_TOO_MANY_DEVICES: ErrorDefinition("ZFS too many devices", Domain.ZFS, _S.FORBIDDEN),
    _C.ZFS_POOL_RESTRICTED_DEVICE: ErrorDefinition("ZFS device not allowed", Domain.ZFS, _S.FORBIDDEN),
}

# Read-only after import; lookups need no locking.
ERROR_DEFINITIONS: Mapping[int, ErrorDefinition] = MappingProxyType(_DEFINITIONS)

UNKNOWN_DEFINITION = ErrorDefinition("Unknown error", UNKNOWN_DOMAIN, HTTPStatus.INTERNAL_SERVER_ERROR)


def classify(code: int) -> ErrorDefinition:
    """Look up (message, domain, http_status) for a code. Never raises."""
    return ERROR_DEFINITIONS.get(code, UNKNOWN_DEFINITION)


def _domain_value(domain: Any) -> str:
    return domain.value if isinstance(domain, Domain) else str(domain)


class RodentError(Exception):
    """
    Classified failure.

    Identity is (code, domain); message, details and metadata are
    informational. Metadata is exposed read-only; use with_metadata() to
    derive a new error carrying extra diagnostics.
    """

    def __init__(
        self,
        code: int,
        domain: str,
        message: str,
        details: str = "",
        http_status: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        metadata: Optional[Mapping[str, str]] = None
    ):
        self.code = int(code)
        self.domain = _domain_value(domain)
        self.message = message
        self.details = details or ""
        self.http_status = int(http_status)
        self._metadata: Dict[str, str] = dict(metadata or {})
        super().__init__(self.__str__())

    def __reduce__(self):
        return (
            RodentError,
            (self.code, self.domain, self.message, self.details, self.http_status, dict(self._metadata))
        )

    @property
    def metadata(self) -> Mapping[str, str]:
        return MappingProxyType(self._metadata)

    def with_metadata(self, key: str, value: Any) -> "RodentError":
        """Return a copy of this error with one more metadata entry."""
        return self.with_metadata_items({key: value})

    def with_metadata_items(self, items: Mapping[str, Any]) -> "RodentError":
        merged = dict(self._metadata)
        for key, value in items.items():
            merged[str(key)] = "" if value is None else str(value)
        clone = RodentError(
            self.code,
            self.domain,
            self.message,
            details=self.details,
            http_status=self.http_status,
            metadata=merged
        )
        clone.__cause__ = self.__cause__
        return clone

    def matches(self, other: Any) -> bool:
        return isinstance(other, RodentError) and self.code == other.code and self.domain == other.domain

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, RodentError):
            return NotImplemented
        return self.matches(other)

    def __hash__(self) -> int:
        return hash((self.code, self.domain))

    def __str__(self) -> str:
        # Metadata stays out of the short form, except captured command output
        msg = f"[{self.domain}-{self.code}] {self.message}"
        if self.details:
            msg += f" - {self.details}"
        stderr = self._metadata.get("stderr")
        if stderr:
            msg += f"\nCommand output: {stderr}"
        return msg

    def __repr__(self) -> str:
        return f"RodentError(code={self.code}, domain={self.domain!r}, message={self.message!r}, details={self.details!r})"

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for API responses. http_status is transport-only."""
        body: Dict[str, Any] = {
            "code": self.code,
            "domain": self.domain,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        if self._metadata:
            body["metadata"] = dict(self._metadata)
        body["timestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return body

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def new(code: int, details: str = "") -> RodentError:
    """Create a classified error for code."""
    definition = classify(code)
    return RodentError(
        code,
        definition.domain,
        definition.message,
        details=details,
        http_status=definition.http_status
    )


def wrap(err: BaseException, code: int) -> RodentError:
    """
    Re-classify err under code.

    Metadata of a wrapped RodentError is carried forward together with a
    record of its code, domain and message.
    """
    if isinstance(err, RodentError):
        wrapped = new(code, err.details).with_metadata_items(err.metadata)
        wrapped = wrapped.with_metadata_items({
            "wrapped_code": err.code,
            "wrapped_domain": err.domain,
            "wrapped_message": err.message,
        })
    else:
        wrapped = new(code, str(err)).with_metadata("wrapped_error", type(err).__name__)
    wrapped.__cause__ = err
    return wrapped


def is_error(err: Any, sentinel: Any) -> bool:
    """True when err and sentinel are RodentErrors with equal code and domain."""
    return isinstance(err, RodentError) and err.matches(sentinel)


def is_rodent_error(err: Any) -> bool:
    return isinstance(err, RodentError)


def command_error(command: str, exit_code: int, stderr: str, code: int = ErrorCode.CMD_EXECUTION) -> RodentError:
    """Error for a failed external command with its diagnostics attached."""
    return new(code, "Command execution failed").with_metadata_items({
        "command": command,
        "exit_code": exit_code,
        "stderr": stderr,
    })


# Sentinels for branching with is_error()
ERR_ZFS_DATASET_NOT_FOUND = new(ErrorCode.ZFS_DATASET_NOT_FOUND)
ERR_ZFS_DATASET_PROPERTY_NOT_FOUND = new(ErrorCode.ZFS_DATASET_PROPERTY_NOT_FOUND)
ERR_ZFS_POOL_PROPERTY_NOT_FOUND = new(ErrorCode.ZFS_POOL_PROPERTY_NOT_FOUND)
ERR_ZFS_POOL_NOT_FOUND = new(ErrorCode.ZFS_POOL_NOT_FOUND)
ERR_ZFS_DATASET_NO_RECEIVE_TOKEN = new(ErrorCode.ZFS_DATASET_NO_RECEIVE_TOKEN)
ERR_ZFS_PERMISSION_DENIED = new(ErrorCode.ZFS_PERMISSION_DENIED)
