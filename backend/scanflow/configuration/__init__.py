from .store import ConfigurationStore

__all__ = ["ConfigurationStore"]
