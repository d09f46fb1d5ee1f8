"""
Configuration constants for the connvault connection store.
"""

import os

# Application Metadata
APP_VERSION = "1.0.0"  # Use: Current version of the package, also reported to 1Password as the integration version. Type: str. Range: Semantic versioning string.
APP_NAME = "connvault"  # Use: Short application name used for directory names and the 1Password integration name. Type: str. Range: Any valid directory-safe string.
CONFIG_FORMAT_VERSION = "1.0"  # Use: Value written to the top-level `version` key of new configuration files. Type: str. Range: Any version string.

# Security Settings
ENCRYPTED_PREFIX = "enc:"  # Use: Marker that starts every locally encrypted password envelope. Type: str. Range: Must not collide with REFERENCE_SCHEME.
SALT_SIZE = 16  # Use: Size of the per-secret random salt in bytes. Type: int. Range: At least 16 bytes (128 bits).
KEY_SIZE = 32  # Use: Size of the derived encryption key in bytes. Corresponds to AES-256. Type: int. Range: 16, 24 or 32 bytes.
NONCE_SIZE = 12  # Use: Size of the AES-GCM nonce in bytes. Type: int. Range: 12 bytes (96 bits) is the recommended size for GCM.
TAG_SIZE = 16  # Use: Size of the AES-GCM authentication tag appended to the ciphertext. Type: int. Range: 16 bytes (128 bits).
PBKDF2_ITERATIONS = 100000  # Use: Number of PBKDF2-HMAC-SHA256 iterations when deriving a key from the master password. Type: int. Range: At least 100,000. Changing it makes existing envelopes unreadable.

# 1Password Settings
REFERENCE_SCHEME = "op://"  # Use: Prefix identifying a vault reference (op://vault/item/field). Type: str. Range: "op://"
DEFAULT_REFERENCE_FIELD = "password"  # Use: Field name used in references produced by item creation. Type: str. Range: Any 1Password field id.
ENCRYPTED_VAULT_TITLE = "[Encrypted]"  # Use: Placeholder title the SDK returns for vaults before an authenticated read. Type: str. Range: "[Encrypted]"
SERVICE_ACCOUNT_TOKEN_ENV = "OP_SERVICE_ACCOUNT_TOKEN"  # Use: Environment variable holding a 1Password service account token; used by the SDK backend when no desktop account is configured. Type: str. Range: Any environment variable name.
OP_EXECUTABLE = os.environ.get("CONNVAULT_OP_PATH", "op")  # Use: Name or path of the 1Password command-line tool used by the CLI backend. Type: str. Range: Executable name on PATH or absolute path.
OP_INTEGRATION_NAME = "connvault"  # Use: Integration name reported to the 1Password SDK. Type: str. Range: Any valid string.

# Vault Timeouts (seconds)
SDK_INIT_TIMEOUT = 2.0  # Use: Upper bound on establishing the SDK session. Type: float. Range: Positive number; a few seconds at most.
VAULT_LIST_TIMEOUT = 1.0  # Use: Upper bound on vault metadata listing calls. Type: float. Range: Sub-second to a few seconds.
ITEM_LIST_TIMEOUT = 5.0  # Use: Upper bound on listing items of a vault (also used to force authentication). Type: float. Range: Positive number.
RESOLVE_TIMEOUT = 10.0  # Use: Upper bound on resolving a single secret reference. Type: float. Range: Several seconds.
CREATE_ITEM_TIMEOUT = 30.0  # Use: Upper bound on creating or updating a vault item. Type: float. Range: Tens of seconds.
AUTH_CHECK_TIMEOUT = 2.0  # Use: Upper bound on the authentication probe (vault list or `op whoami`). Type: float. Range: Positive number.

# File and Directory Names
CONFIG_DIR_NAME = "connvault"  # Use: Name of the directory under the platform config root holding the configuration and side files. Type: str. Range: Any valid directory name.
DEFAULT_CONFIG_FILE = "config.yaml"  # Use: Default filename of the connection configuration. Type: str. Range: Any valid filename.
RECENT_CONFIGS_FILE = "recent_configs.txt"  # Use: Filename for the list of recently opened configuration paths, stored beside the default configuration. Type: str. Range: Any valid filename.
TEMP_FILE_SUFFIX = ".tmp"  # Use: Suffix of the temporary file written before atomically replacing the configuration. Type: str. Range: Any filename suffix.
CONFIG_DIR_MODE = 0o755  # Use: Permission bits for a newly created configuration directory. Type: int. Range: Octal file mode.

# Recent Configuration Settings
MAX_RECENT_CONFIGS = 10  # Use: Maximum number of recently opened configuration paths to remember. Type: int. Range: Positive integer.
