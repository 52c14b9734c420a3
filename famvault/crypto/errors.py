"""
Encryption error taxonomy.

Callers catch EncryptionError to handle every failure of this layer,
or one of the subclasses to react to a specific kind.
"""


class EncryptionError(Exception):
    """Base exception for the encryption layer."""
    pass


class ConfigurationError(EncryptionError):
    """Master key missing or malformed. Fatal: nothing is touched."""
    pass


class MissingSaltError(ConfigurationError):
    """The user's per-profile encryption salt does not exist."""
    pass


class ValidationError(EncryptionError):
    """Input rejected before any cryptography ran."""
    pass


class IntegrityError(EncryptionError):
    """Authentication tag or embedded checksum did not verify."""
    pass
