class GeometryError(ValueError):
    pass


class DegenerateGeometryError(GeometryError):
    """Geometry that cannot be turned into a polygon with a non-zero area."""

    pass


class ClassifierError(ValueError):
    pass


class NoDataError(ClassifierError):
    pass


class InsufficientDataError(ClassifierError):
    pass


class InvalidValueError(ValueError):
    pass


class CRSMismatchError(ValueError):
    pass
