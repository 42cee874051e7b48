from .relay_board import RelayBoard

__all__ = ['RelayBoard']
