# neuroevolution_library/exceptions.py


class NeuroevolutionError(Exception):
    """Base for all engine exceptions."""

    pass


class ConfigurationError(NeuroevolutionError):
    """Inconsistent or unreadable tunables."""

    pass


class StructuralMismatch(NeuroevolutionError):
    """Genome shapes that do not agree with their declared layers, or with each other."""

    pass


class GenomeFormatError(StructuralMismatch):
    """A persisted genome that cannot be turned back into a valid genome."""

    pass


class NumericAnomaly(NeuroevolutionError):
    """NaN/Infinity or out-of-range values in inputs, parameters or fitness."""

    pass


class SuspectedCorruptFitness(NeuroevolutionError):
    """Poisoned sentinel values or implausibly uniform fitness across a batch."""

    pass


class ResourceUnavailable(NeuroevolutionError):
    """Checkpoint directory missing or a write that failed."""

    pass
