import threading
from typing import Optional, Sequence

import structlog

from crib_hunter.algorithm.differential import DifferentialKeystreamAnalyzer
from crib_hunter.algorithm.search_engine import HypothesisSearchEngine
from crib_hunter.catalog.ciphers import CipherConstructionSpec
from crib_hunter.catalog.key_derivation import KeyDerivationSpec
from crib_hunter.config import SearchConfig
from crib_hunter.models.results import PartialKeystream, SearchOutcome, Unresolved
from crib_hunter.models.sample import Sample, label_samples
from crib_hunter.progress import ProgressPublisher, SearchSnapshot, SingleSlotQueue

log = structlog.get_logger()


def solve(
    samples: Sequence[Sample],
    context_field_names: Sequence[str],
    config: Optional[SearchConfig] = None,
    state_queue: Optional[SingleSlotQueue[SearchSnapshot]] = None,
    *,
    key_derivations: Optional[Sequence[KeyDerivationSpec]] = None,
    constructions: Optional[Sequence[CipherConstructionSpec]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> SearchOutcome:
    """Search for a closed-form hypothesis, then fall back to differential analysis.

    The state queue, if given, is always closed so a UI loop can exit. Setting
    `cancel_event` ends the run as Unresolved("cancelled") without the fallback.
    """
    config = config or SearchConfig()
    samples = label_samples(samples)
    publisher = ProgressPublisher(state_queue, samples=len(samples))

    try:
        engine = HypothesisSearchEngine(
            context_field_names,
            config,
            key_derivations=key_derivations,
            constructions=constructions,
            publisher=publisher,
            cancel_event=cancel_event,
        )
        outcome = engine.search(samples)
        if not isinstance(outcome, Unresolved) or outcome.reason in ("ambiguous", "cancelled"):
            return outcome

        if not DifferentialKeystreamAnalyzer.same_key_group(samples):
            log.info("differential analysis skipped", reason="no same-key pair with different plaintext")
            return outcome

        analyzer = DifferentialKeystreamAnalyzer(
            context_field_names,
            config,
            key_derivations=key_derivations,
            publisher=publisher,
        )
        partial = analyzer.analyze(samples)
        if isinstance(partial, PartialKeystream):
            return partial
        return Unresolved(
            samples_considered=len(samples),
            combinations_tried=outcome.combinations_tried,
            reason=f"{outcome.reason}; {partial.reason}",
            budget_exhausted=outcome.budget_exhausted,
        )
    finally:
        if state_queue is not None:
            state_queue.close()
