from splitter.modules.registry import ModuleRegistry

__all__ = ["ModuleRegistry"]
