"""
Configuration subsystem.

- **config.py**: static settings from environment variables (`Config`)
- **manager.py**: tunable settings from built-in defaults and YAML
  (`ConfigManager`); import it from `perkboost.core.config.manager`, since it
  depends on logging which itself reads `Config`.
"""

from perkboost.core.config.config import Config

__all__ = ["Config"]
