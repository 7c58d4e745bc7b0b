from mpm2d.config.base_config import Config, load_config

__all__ = ['Config', 'load_config']
