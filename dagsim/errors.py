"""Exception types raised by the DAG simulator."""


class DagSimError(Exception):
    """Base class for simulator errors."""


class DagFormatError(DagSimError):
    """A DAG file is malformed or describes an invalid graph."""


class TopologyError(DagSimError):
    """The cluster topology is invalid or has no path between two nodes."""


class LogSinkError(DagSimError):
    """The CSV log sinks could not be opened."""
