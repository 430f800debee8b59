"""Error types raised by the RAID maintenance engine."""


class RaidError(Exception):
    """Base class for RAID engine errors."""
    def __init__(self, message, code='RaidError'):
        super().__init__(message)
        self.message = message
        self.code = code


class RaidConfigurationError(RaidError):
    """Configuration, policy or codec definition is invalid."""
    def __init__(self, message):
        super().__init__(message, "RaidConfigurationError")


class ConsistencyViolation(RaidError):
    """Source or parity changed underneath an encode."""
    def __init__(self, message):
        super().__init__(message, "ConsistencyViolation")


class ReplicationAdjustmentFailure(RaidError):
    """The filesystem refused to lower the replication of a source file."""
    def __init__(self, path, target_replication):
        super().__init__(
            f"Error in reducing replication of {path} to {target_replication}",
            "ReplicationAdjustmentFailure"
        )
        self.path = path
        self.target_replication = target_replication


class RecoveryFailure(RaidError):
    """A corrupt block could not be reconstructed."""
    def __init__(self, message, code="RecoveryFailure"):
        super().__init__(message, code)


class NoParityAvailable(RecoveryFailure):
    """No parity file exists for the source, recovery is impossible."""
    def __init__(self, codec_id, path):
        super().__init__(
            f"Could not find {codec_id} parity file for {path}",
            "NoParityAvailable"
        )
        self.codec_id = codec_id
        self.path = path


class ArchiveFailure(RaidError):
    """Building or installing a parity archive failed."""
    def __init__(self, message, exit_code=None):
        super().__init__(message, "ArchiveFailure")
        self.exit_code = exit_code


class NotSupported(RaidError):
    """Operation is not implemented by this service."""
    def __init__(self, message="Not supported"):
        super().__init__(message, "NotSupported")
