APP_NAME = "AI Genesis"
__version__ = "0.1.0"

__all__ = ["APP_NAME", "__version__"]
