"""Exception hierarchy for the signature descrambler."""


class DescramblerError(Exception):
    """Base class for all descrambling errors."""


class ScanFailure(DescramblerError):
    """No balanced literal could be read at the requested offset."""


class ExtractionFailure(DescramblerError):
    """The transform plan could not be recovered from a player script."""


class EntryNotFound(ExtractionFailure):
    """The signature entry routine could not be located."""


class HelperNotFound(ExtractionFailure):
    """The helper object holding the transform members could not be located."""


class UnresolvedTransform(ExtractionFailure):
    """A called helper member matched none of the known transform shapes."""


class UnknownOperation(DescramblerError):
    """A plan step names an operation missing from the transform catalog."""


class MissingSignature(DescramblerError):
    """A format carries neither a signed url nor a raw signature."""


class UnsupportedPlayer(DescramblerError):
    """The player version is known to be incompatible."""


__all__ = [
    "DescramblerError",
    "ScanFailure",
    "ExtractionFailure",
    "EntryNotFound",
    "HelperNotFound",
    "UnresolvedTransform",
    "UnknownOperation",
    "MissingSignature",
    "UnsupportedPlayer",
]
