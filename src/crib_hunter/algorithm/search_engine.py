"""Exhaustive search over (key derivation, cipher construction, IV source).

A hypothesis counts only if it reproduces every sample's plaintext byte for byte.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import threading
import time

from cryptography.exceptions import UnsupportedAlgorithm
import structlog

from crib_hunter.catalog.ciphers import CipherConstructionSpec, build_cipher_constructions
from crib_hunter.catalog.key_derivation import NO_KEY, KeyDerivationSpec, build_key_derivations
from crib_hunter.config import SearchConfig
from crib_hunter.errors import AmbiguousMatch, CribHunterError
from crib_hunter.iv_placement import IVPlacementEnumerator
from crib_hunter.models.hypothesis import Hypothesis, IVSource, MatchResult
from crib_hunter.models.results import Confidence, ConfirmedHypothesis, SearchOutcome, SearchState, Unresolved
from crib_hunter.models.sample import Sample, distinct_context_count, label_samples
from crib_hunter.progress import ProgressPublisher

log = structlog.get_logger()

# Primitive failures that just mean "not this combination".
DECODE_ERRORS = (CribHunterError, ValueError, TypeError, OverflowError, UnsupportedAlgorithm)

DerivedKeys = Dict[Tuple[str, str], Optional[bytes]]


@dataclass(frozen=True, slots=True)
class WorkItem:
    key_derivation: KeyDerivationSpec
    construction: CipherConstructionSpec

    @property
    def name(self) -> str:
        return f"{self.key_derivation.name} | {self.construction.name}"


def derive_keys(key_derivations: Sequence[KeyDerivationSpec], samples: Sequence[Sample]) -> DerivedKeys:
    """The derived-key cache: every (derivation, sample) pair computed once."""
    derived: DerivedKeys = {}
    for kd in key_derivations:
        for sample in samples:
            try:
                derived[(kd.name, sample.label)] = kd(sample.raw_key, sample.context)
            except (KeyError, ValueError, TypeError) as e:
                log.debug("key derivation skipped", key_derivation=kd.name, sample=sample.label, error=str(e))
                derived[(kd.name, sample.label)] = None
    return derived


class HypothesisSearchEngine:
    def __init__(
        self,
        context_field_names: Sequence[str],
        config: Optional[SearchConfig] = None,
        *,
        key_derivations: Optional[Sequence[KeyDerivationSpec]] = None,
        constructions: Optional[Sequence[CipherConstructionSpec]] = None,
        publisher: Optional[ProgressPublisher] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.context_field_names = list(context_field_names)
        self.config = config or SearchConfig()
        self.key_derivations = list(key_derivations) if key_derivations is not None \
            else build_key_derivations(self.context_field_names)
        self.constructions = list(constructions) if constructions is not None else build_cipher_constructions()
        self.enumerator = IVPlacementEnumerator(self.context_field_names, self.config.max_iv_offsets)
        self.publisher = publisher or ProgressPublisher()
        # Set from outside to abandon the run; never cleared by the engine.
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()

        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._tried = 0
        self._deadline: Optional[float] = None
        self._budget_exhausted = False

    @property
    def combinations_tried(self) -> int:
        with self._lock:
            return self._tried

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        """Abandon the remaining work items. The running search ends as Unresolved("cancelled")."""
        self.cancel_event.set()

    def work_items(self, samples: Sequence[Sample], derived: DerivedKeys) -> List[WorkItem]:
        first = samples[0].label
        items = []
        for construction in self.constructions:
            if construction.keyless:
                items.append(WorkItem(NO_KEY, construction))
                continue
            for kd in self.key_derivations:
                if kd.output_length is not None and not construction.accepts_key_length(kd.output_length):
                    continue
                key = derived.get((kd.name, first))
                if key is None or not construction.accepts_key_length(len(key)):
                    continue
                items.append(WorkItem(kd, construction))
        return items

    def search(self, samples: Sequence[Sample]) -> SearchOutcome:
        """Run the search. Never raises for bad data; failures end as Unresolved."""
        self._reset()
        samples = label_samples(samples)
        self.publisher.publish(SearchState.COLLECTING_SAMPLES)
        if not samples:
            return self._finish(Unresolved(0, 0, reason="no samples"))
        if self.cancelled:
            return self._finish(Unresolved(len(samples), 0, reason="cancelled"))

        derived = derive_keys(self.key_derivations, samples)
        items = self.work_items(samples, derived)
        log.info("search started", samples=len(samples), work_items=len(items),
                 max_combinations=self.config.max_combinations)

        matches = self._run(items, samples, derived)
        tried = self.combinations_tried
        if self.cancelled:
            log.warning("search cancelled", tried=tried, work_items=len(items))
            return self._finish(Unresolved(len(samples), tried, reason="cancelled"))

        try:
            match = self._select(matches)
        except AmbiguousMatch as e:
            log.error("ambiguous match", error=str(e), count=len(e.hypotheses))
            return self._finish(Unresolved(len(samples), tried, reason="ambiguous",
                                           budget_exhausted=self._budget_exhausted, ambiguous=e.hypotheses))

        if match is None:
            reason = "budget exhausted" if self._budget_exhausted else "no hypothesis matched"
            return self._finish(Unresolved(len(samples), tried, reason=reason,
                                           budget_exhausted=self._budget_exhausted))

        confidence = Confidence.CONFIRMED if distinct_context_count(samples) >= 2 else Confidence.LOW
        return self._finish(ConfirmedHypothesis(match.hypothesis, match, confidence, tried))

    def _reset(self) -> None:
        with self._lock:
            self._tried = 0
            self._budget_exhausted = False
        self._cancel.clear()
        timeout = self.config.timeout
        self._deadline = time.monotonic() + timeout if timeout else None

    def _finish(self, outcome: SearchOutcome) -> SearchOutcome:
        if isinstance(outcome, ConfirmedHypothesis):
            state = SearchState.LOW_CONFIDENCE if outcome.low_confidence else SearchState.CONFIRMED
            summary = outcome.hypothesis.describe()
        else:
            state = SearchState.UNRESOLVED
            summary = outcome.reason
        log.info("search finished", state=str(state), tried=self.combinations_tried, result=summary)
        self.publisher.publish(state, combinations_tried=self.combinations_tried,
                               max_combinations=self.config.max_combinations, result=summary)
        return outcome

    @staticmethod
    def _select(matches: List[MatchResult]) -> Optional[MatchResult]:
        """The single full match, if any. Several full matches are never broken by preference."""
        confirmed = sorted((m for m in matches if m.all_samples_matched), key=lambda m: m.hypothesis.describe())
        if len(confirmed) > 1:
            raise AmbiguousMatch([m.hypothesis for m in confirmed])
        return confirmed[0] if confirmed else None

    def _run(self, items: List[WorkItem], samples: List[Sample], derived: DerivedKeys) -> List[MatchResult]:
        matches: List[MatchResult] = []
        done = 0
        self._publish_progress(len(items), done, "", matches)

        with ThreadPoolExecutor(max_workers=self.config.worker_count) as executor:
            futures = {executor.submit(self._run_item, item, samples, derived): item for item in items}
            for future in as_completed(futures):
                item = futures[future]
                try:
                    found = future.result()
                except Exception as e:
                    log.error("work item failed", item=item.name, error=str(e))
                    found = []
                with self._lock:
                    matches.extend(found)
                done += 1
                for m in found:
                    log.debug("hypothesis matched", hypothesis=m.hypothesis.describe())
                self._publish_progress(len(items), done, item.name, matches)
        return matches

    def _publish_progress(self, total: int, done: int, current: str, matches: List[MatchResult]) -> None:
        self.publisher.publish(
            SearchState.SEARCHING,
            work_items_total=total,
            work_items_done=done,
            combinations_tried=self.combinations_tried,
            max_combinations=self.config.max_combinations,
            current_item=current,
            matches=tuple(m.hypothesis.describe() for m in matches),
        )

    def _charge(self) -> bool:
        """Account for one decode attempt. False once cancelled or the budget or deadline is spent."""
        if self.cancel_event.is_set():
            self._cancel.set()
            return False
        with self._lock:
            if self._tried >= self.config.max_combinations:
                self._budget_exhausted = True
                self._cancel.set()
                return False
            if self._deadline is not None and time.monotonic() > self._deadline:
                self._budget_exhausted = True
                self._cancel.set()
                return False
            self._tried += 1
            return True

    @staticmethod
    def _attempt(construction: CipherConstructionSpec, key: bytes, iv: bytes, body: bytes, plaintext: bytes) -> bool:
        try:
            return construction.decode(key, iv, body) == plaintext
        except DECODE_ERRORS:
            return False

    def _try(self, construction: CipherConstructionSpec, key: bytes, source: IVSource, sample: Sample) -> Optional[bool]:
        """Decode one sample under one IV source. None when the budget ran out."""
        try:
            iv = source.resolve(sample.ciphertext, sample.context)
            body = source.body(sample.ciphertext)
        except ValueError:
            return False
        if construction.length_preserving and len(body) != len(sample.plaintext):
            return False
        if not self._charge():
            return None
        return self._attempt(construction, key, iv, body, sample.plaintext)

    def _run_item(self, item: WorkItem, samples: List[Sample], derived: DerivedKeys) -> List[MatchResult]:
        if self._cancel.is_set() or self.cancel_event.is_set():
            return []
        kd, construction = item.key_derivation, item.construction

        first = samples[0]
        key = derived[(kd.name, first.label)] if not construction.keyless else b""
        surviving: List[IVSource] = []
        for candidate in self.enumerator.candidates(first, construction.iv_length, construction.tag_length,
                                                    include_zero=construction.zero_iv_alias is None):
            ok = self._try(construction, key, candidate.source, first)
            if ok is None:
                return []
            if ok:
                surviving.append(candidate.source)

        # Later samples only re-test IV sources that explained every earlier one.
        for sample in samples[1:]:
            if not surviving:
                return []
            key = derived.get((kd.name, sample.label)) if not construction.keyless else b""
            if key is None:
                return []
            next_surviving = []
            for source in surviving:
                ok = self._try(construction, key, source, sample)
                if ok is None:
                    return []
                if ok:
                    next_surviving.append(source)
            surviving = next_surviving

        labels = frozenset(s.label for s in samples)
        return [
            MatchResult(Hypothesis(kd.name, construction.name, source), labels, True)
            for source in dict.fromkeys(surviving)
        ]
