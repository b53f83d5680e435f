# Exceptions raised by the clustering package


class ClusteringError(Exception):
    """Base class for clustering-related errors"""
    pass


class InputValidationError(ClusteringError):
    """Errors related to input points or parameters"""
    pass


class ClusteringTimeoutError(ClusteringError):
    """Raised when a run exceeds its time budget"""
    pass


class ConfigurationError(ClusteringError):
    """Errors related to environment configuration"""
    pass
