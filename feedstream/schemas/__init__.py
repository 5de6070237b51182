from feedstream.schemas.config import ColorMap, UserConfig

__all__ = ["ColorMap", "UserConfig"]
