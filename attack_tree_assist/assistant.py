"""
Attack Tree Assistant - the surface the editor UI talks to.

Builds the KB index once, then wires resolver, suggest, prune and the
optional semantic oracle together explicitly. The active scenario is held
here and passed into every engine call.

Usage:
    assistant = AttackTreeAssistant.from_sources('data/attack_patterns.json',
                                                 'data/scenarios.json', 'config.json')
    result = assistant.suggest(graph, parent_label='Password Reset Flow')
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from .config import AssistConfig, load_config
from .core.graph import TreeGraph
from .evaluation import evaluate
from .kb import KBEntry, build_index
from .loader import load_config as load_config_file, load_kb, load_scenario
from .prune import KeptLabels, PruneEngine, PruneFlag
from .resolver import Explanation, Resolution, Resolver
from .scenario import Scenario
from .semantic_oracle import OracleClient, SemanticOracle
from .suggest import AcceptResult, SuggestEngine, SuggestResult, accept_suggestion
from .woz import WozFeed

logger = logging.getLogger(__name__)
events = logging.getLogger('attack_tree_assist.events')

GraphLike = Union[TreeGraph, Dict[str, Any], None]


def as_graph(graph: GraphLike) -> TreeGraph:
    if isinstance(graph, TreeGraph):
        return graph
    return TreeGraph.from_dict(graph)


def log_event(event: str, **data) -> None:
    """Study instrumentation record on the events logger."""
    events.info("%s %s", event, json.dumps(data, default=str), extra={'event': event, 'data': data})


class AttackTreeAssistant:
    """Suggest / prune / explain / evaluate for one editing session."""

    def __init__(self, entries: Optional[List[Union[KBEntry, Dict[str, Any]]]] = None,
                 config: Optional[Union[AssistConfig, Dict[str, Any]]] = None,
                 scenario: Optional[Union[Scenario, Dict[str, Any]]] = None):
        if isinstance(config, AssistConfig):
            self.config = config
        else:
            self.config = load_config(config)

        self.index = build_index(entries or [])
        self.resolver = Resolver(self.index, self.config)

        self.oracle_client: Optional[OracleClient] = None
        semantic = self.config.get_semantic_config()
        if semantic['enabled'] and len(self.index):
            self.oracle_client = OracleClient(SemanticOracle(self.index.entries), timeout=semantic['timeout'])
            self.oracle_client.warm()
        neighbours = self.oracle_client.query if self.oracle_client else None

        self.woz_feed = WozFeed.from_config(self.config.woz, on_event=log_event)
        if self.woz_feed is not None:
            self.woz_feed.start()
        feed = self.woz_feed.current if self.woz_feed else None

        self.suggest_engine = SuggestEngine(self.index, self.resolver, self.config, neighbours, feed)
        self.prune_engine = PruneEngine(self.resolver, self.config, neighbours)
        self.kept = KeptLabels()

        self.scenario = Scenario()
        if scenario is not None:
            self.register_scenario_goal(None, scenario)

        log_event('session_started', scenario=self.scenario.id or None, kb_size=len(self.index),
                  semantic=self.oracle_client is not None)

    @classmethod
    def from_sources(cls, kb_source=None, scenario_source=None, config_source=None,
                     scenario_id: Optional[str] = None) -> 'AttackTreeAssistant':
        """Load KB, scenario and config from paths/URLs; failures degrade to defaults."""
        config = load_config_file(config_source)
        scenario_id = scenario_id or config.experiment.get('scenario')
        scenario = load_scenario(scenario_source, scenario_id)
        return cls(load_kb(kb_source), config, scenario)

    # ---- scenario setup ---------------------------------------------------

    def register_scenario_goal(self, label: Optional[str],
                               scenario: Optional[Union[Scenario, Dict[str, Any]]] = None) -> Scenario:
        """
        Make ``scenario`` the active one and/or set its goal label.

        Scenario aliases are registered with the resolver.
        """
        if isinstance(scenario, dict):
            scenario = Scenario.from_dict(scenario, str(scenario.get('id') or ''))
        if scenario is not None:
            self.scenario = scenario
            self.resolver.clear_aliases()
            if scenario.aliases:
                self.resolver.add_aliases(scenario.aliases)
        if label and str(label).strip():
            self.scenario.goal = str(label).strip()
        logger.info("Scenario %r active, goal %r", self.scenario.id or 'sandbox', self.scenario.goal)
        return self.scenario

    def add_scenario_aliases(self, mapping: Dict[str, Any]) -> int:
        self.scenario.add_aliases(mapping)
        return self.resolver.add_aliases(mapping)

    # ---- queries ----------------------------------------------------------

    def resolve(self, label: Optional[str]) -> Optional[Resolution]:
        return self.resolver.resolve(label)

    def explain(self, label: Optional[str]) -> Explanation:
        closest = None
        if self.oracle_client is not None:
            closest = self.oracle_client.query
        explanation = self.resolver.explain(label, self.scenario, closest,
                                            k=self.config.get_semantic_config()['top_k'])
        log_event('explain_view', label=label, severity=explanation.severity)
        return explanation

    def suggest(self, graph: GraphLike, parent_label: Optional[str] = None,
                limit_top: Optional[int] = None, limit_more: Optional[int] = None) -> SuggestResult:
        result = self.suggest_engine.suggest(as_graph(graph), parent_label, self.scenario, limit_top, limit_more)
        log_event('suggest_shown', parent=parent_label, top=[s.id for s in result.top],
                  more=[s.id for s in result.more])
        return result

    def prune(self, graph: GraphLike, max_visible: Optional[int] = None) -> List[PruneFlag]:
        return self.prune_engine.prune(as_graph(graph), self.scenario, max_visible, self.kept)

    def keep(self, label: Optional[str] = None, element_id: Optional[str] = None) -> None:
        """
        User kept a flagged node: never flag it again this session.

        Step nodes are remembered by label, so a re-created node stays kept.
        Gate flags are only suppressed by ``element_id``.
        """
        data = {'label': label}
        if label:
            self.kept.add(label)
        if element_id:
            self.kept.add_element(element_id)
            data['element_id'] = element_id
        log_event('prune_keep', **data)

    def evaluate(self, graph: GraphLike) -> Dict[str, Any]:
        return evaluate(as_graph(graph), self.scenario, self.config)

    def accept(self, graph: TreeGraph, suggestion, parent_label: Optional[str] = None) -> AcceptResult:
        """Apply an accepted suggestion to ``graph`` (mutated in place)."""
        result = accept_suggestion(graph, suggestion, parent_label, self.index,
                                   self.config.suggest['accept_child_cap'])
        if result.as_root:
            log_event('node_added_from_suggest', name=result.node.label, parent=None, **{'as': 'root'})
        else:
            log_event('node_added_from_suggest', name=result.node.label, parent=parent_label)
        for child in result.children:
            log_event('node_added_from_suggest', name=child.label, parent=result.node.label)
        return result

    def close(self) -> None:
        if self.oracle_client is not None:
            self.oracle_client.close()
        if self.woz_feed is not None:
            self.woz_feed.stop()
