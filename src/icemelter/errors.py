"""Exception taxonomy for icemelter.

Everything fatal derives from IcemelterError so that the command line entry
point can turn it into a message and a non-zero exit status in one place.
Formatter failures never appear here: they are recovered where they happen.
"""


class IcemelterError(Exception):
    pass


class SetupError(IcemelterError):
    """Bad configuration: invalid regex, empty check command, missing token."""


class RetrievalError(IcemelterError):
    """The source could not be read or fetched."""


class OracleError(IcemelterError):
    """The command under test could not be spawned at all."""


class ReductionError(IcemelterError):
    """The reduction engine failed (parse failure or internal fault)."""


class BisectionError(IcemelterError):
    """Bisection could not be started.

    Bisection is best effort, so the pipeline downgrades this to a warning.
    """


def first_error(exc: BaseException) -> BaseException:
    """The first leaf exception of a (possibly nested) exception group.

    trio nurseries wrap everything raised by their children in groups, even
    when there is only one.
    """
    while isinstance(exc, BaseExceptionGroup):
        exc = exc.exceptions[0]
    return exc
