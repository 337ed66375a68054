# safemicro/core/errors.py


class SdcError(ValueError):
    """Base class for errors raised by the anonymisation stages."""


class SchemaError(SdcError):
    """A referenced column is missing or has the wrong kind."""


class ParameterError(SdcError):
    """A stage parameter is invalid (threshold, group size, method, ...)."""


class DegenerateModelWarning(UserWarning):
    """
    Statistical degeneracy: a model did not converge, a matrix is singular,
    or the data are too sparse. The stage falls back or is skipped and the
    table is left unmodified.
    """
