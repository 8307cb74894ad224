from .api import register_layer_tools

__all__ = ["register_layer_tools"]
