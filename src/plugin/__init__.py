"""
Mount Cache Plugin — CI Step Driver

Provides:
- Plugin configuration (PluginConfig, load_config)
- Backend selection (select_one)
- Orchestrator (CacheOrchestrator) — rebuild / restore over all mounts
- Run summary record (RunRecord)
"""

from .config import PluginConfig, load_config
from .selector import BackendOption, SelectedBackend, select_one
from .observability import RunRecord
from .orchestrator import CacheOrchestrator, PhaseResult, RunReport

__all__ = [
    'PluginConfig', 'load_config',
    'BackendOption', 'SelectedBackend', 'select_one',
    'RunRecord',
    'CacheOrchestrator', 'PhaseResult', 'RunReport',
]
