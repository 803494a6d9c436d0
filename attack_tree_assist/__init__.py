"""
Attack Tree Assistant

Suggest, prune, explain and evaluate support for an attack tree editor,
driven by a knowledge base of attack patterns and a study scenario.
"""

from .assistant import AttackTreeAssistant
from .config import AssistConfig, DEFAULT_CONFIG, load_config
from .core.graph import GraphLink, GraphNode, TreeGraph
from .evaluation import evaluate
from .kb import KBEntry, KBIndex, build_index
from .prune import KeptLabels, PruneEngine, PruneFlag
from .resolver import Explanation, Resolution, Resolver
from .scenario import Scenario
from .suggest import SuggestEngine, Suggestion, SuggestResult, accept_suggestion
from .woz import WozFeed

__version__ = "0.1.0"

__all__ = [
    'AttackTreeAssistant',
    'AssistConfig', 'DEFAULT_CONFIG', 'load_config',
    'GraphLink', 'GraphNode', 'TreeGraph',
    'evaluate',
    'KBEntry', 'KBIndex', 'build_index',
    'KeptLabels', 'PruneEngine', 'PruneFlag',
    'Explanation', 'Resolution', 'Resolver',
    'Scenario',
    'SuggestEngine', 'Suggestion', 'SuggestResult', 'accept_suggestion',
    'WozFeed',
]
