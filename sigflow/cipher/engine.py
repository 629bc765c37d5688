import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sigflow.cipher.catalog import DEFAULT_CATALOG, TransformCatalog
from sigflow.cipher.extractor import PlanExtractor
from sigflow.cipher.plan import TransformPlan
from sigflow.configs import settings
from sigflow.exceptions import ExtractionFailure, UnsupportedPlayer

logger = logging.getLogger(__name__)


def decrypt(plan: TransformPlan, signature: str, catalog: TransformCatalog = DEFAULT_CATALOG) -> str:
    """
    Apply every step of ``plan`` to ``signature`` in order.

    Raises:
        UnknownOperation: If a step names an operation missing from ``catalog``.
    """
    chars = list(signature)
    for op in plan:
        catalog.apply(op.name, chars, op.arg)
    return "".join(chars)


@dataclass(frozen=True)
class CipherContext:
    """A transform plan bound to the catalog it runs against. Read-only once built."""

    plan: TransformPlan
    catalog: TransformCatalog = field(default=DEFAULT_CATALOG, compare=False)

    @classmethod
    def from_js(
        cls, js: str, extractor: Optional[PlanExtractor] = None, catalog: TransformCatalog = DEFAULT_CATALOG
    ) -> "CipherContext":
        return cls(plan=(extractor or PlanExtractor()).extract(js), catalog=catalog)


class CipherEngine:
    def __init__(self, context: CipherContext):
        self.context = context

    @classmethod
    def from_js(cls, js: str) -> "CipherEngine":
        return cls(CipherContext.from_js(js))

    def decrypt(self, signature: str) -> str:
        return decrypt(self.context.plan, signature, self.context.catalog)


class CipherContextCache:
    """
    Cipher contexts keyed by player version.

    Only the most recent ``maxsize`` versions are kept; seeing a new version
    evicts the oldest one. A version whose plan extraction failed is remembered
    the same way and its failure re-raised without extracting again.
    """

    def __init__(
        self,
        maxsize: Optional[int] = None,
        unsupported_players: Optional[Iterable[str]] = None,
        extractor: Optional[PlanExtractor] = None,
        catalog: TransformCatalog = DEFAULT_CATALOG,
    ):
        self.maxsize = max(1, maxsize if maxsize is not None else settings.cipher_cache_size)
        self.unsupported_players = frozenset(
            unsupported_players if unsupported_players is not None else settings.unsupported_players
        )
        self.extractor = extractor or PlanExtractor()
        self.catalog = catalog
        self._contexts: OrderedDict[str, CipherContext] = OrderedDict()
        self._failures: OrderedDict[str, ExtractionFailure] = OrderedDict()
        self._lock = threading.Lock()

    def __contains__(self, player_id: str) -> bool:
        with self._lock:
            return player_id in self._contexts

    def lookup(self, player_id: str) -> Optional[CipherContext]:
        """Return the cached context for ``player_id`` without building one."""
        self.check_supported(player_id)
        with self._lock:
            context = self._contexts.get(player_id)
            if context is not None:
                self._contexts.move_to_end(player_id)
            return context

    def check_supported(self, player_id: str) -> None:
        """Fail fast for denylisted versions and versions that already failed."""
        if player_id in self.unsupported_players:
            raise UnsupportedPlayer(f"Player {player_id} is not supported by this descrambler")
        with self._lock:
            failure = self._failures.get(player_id)
        if failure is not None:
            raise type(failure)(*failure.args)

    def get(self, player_id: str, js: str) -> CipherContext:
        self.check_supported(player_id)
        with self._lock:
            context = self._contexts.get(player_id)
            if context is not None:
                self._contexts.move_to_end(player_id)
                return context

            try:
                context = CipherContext.from_js(js, extractor=self.extractor, catalog=self.catalog)
            except ExtractionFailure as e:
                logger.error(f"Player {player_id} is unsupported: {e}")
                self._failures[player_id] = e
                while len(self._failures) > self.maxsize:
                    self._failures.popitem(last=False)
                raise

            logger.info(f"Built cipher for player {player_id}: {context.plan}")
            self._contexts[player_id] = context
            while len(self._contexts) > self.maxsize:
                evicted, _ = self._contexts.popitem(last=False)
                logger.debug(f"Discarded cipher for player {evicted}")
            return context

    def clear(self) -> None:
        with self._lock:
            self._contexts.clear()
            self._failures.clear()


cipher_cache = CipherContextCache()
