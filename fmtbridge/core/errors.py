# fmtbridge/core/errors.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)


class HostError(RuntimeError):
    pass


class OutOfBoundsError(HostError):
    pass


class InvalidEncodingError(HostError):
    pass


class MissingPreconditionError(HostError):
    pass


class UnboundMemoryError(MissingPreconditionError):
    """A host function ran before the instance memory was bound."""


class LoadError(HostError):
    pass


class DeserializationError(LoadError):
    pass


class InstantiationError(LoadError):
    pass


class GuestError(HostError):
    """The guest trapped or broke its side of the protocol; discard the instance."""


class FormatError(HostError):
    pass


class PluginUnavailableError(FormatError):
    pass
