from istream_abr.config.config import ABRConfig, StaticConfig

__all__ = ["ABRConfig", "StaticConfig"]
