"""AWS resource adapters for the Gyro infrastructure orchestrator."""

__version__ = "0.1.0"
