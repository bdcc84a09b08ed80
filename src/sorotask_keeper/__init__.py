"""SoroTask keeper: discovers due automation tasks and executes them."""

__version__ = "0.1.0"
